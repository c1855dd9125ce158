"""Command line interface for wgcm"""
