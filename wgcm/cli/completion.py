"""
Bash completion for wgcm

Install with:
    wgcm bash > ~/.local/share/bash-completion/completions/wgcm
or, for the current shell only:
    source <(wgcm bash)
"""

from typing import Dict, List

from wgcm.topology import Field

COMMANDS = [
    'list', 'names', 'add', 'peer', 'unpeer', 'route', 'allow', 'unallow',
    'remove', 'export', 'openbsd', 'genpsk', 'setpsk', 'clearpsk',
    'keepalive', 'set', 'dump', 'bash',
]

# Word positions (COMP_WORDS length) at which an interface name is expected
NAME_POSITIONS: Dict[str, List[int]] = {
    'list': [3],
    'peer': [3, 4],
    'unpeer': [3, 4],
    'route': [3, 4],
    'allow': [3, 4],
    'unallow': [3, 4],
    'remove': [3],
    'export': [3],
    'openbsd': [3],
    'genpsk': [3, 4],
    'setpsk': [3, 4],
    'clearpsk': [3, 4],
    'keepalive': [3, 4],
    'set': [3],
}

NAMES_WORDS = '$(WGCM_OUTPUT=table wgcm names 2>/dev/null)'


def _case_branch(command: str, positions: List[int]) -> List[str]:
    lines = [f"        {command})"]
    for position in positions:
        lines.append(f'            if [ "${{#COMP_WORDS[@]}}" -eq {position} ]; then')
        lines.append(f'                COMPREPLY=($(compgen -W "{NAMES_WORDS}" -- "$cur"))')
        lines.append("            fi")
    return lines


def completion_script() -> str:
    """Return the bash completion script for the wgcm command"""
    fields = ' '.join(f.value for f in Field)

    lines = [
        "# bash completion for wgcm",
        "",
        "_wgcm_completions() {",
        '    local cur="${COMP_WORDS[COMP_CWORD]}"',
        "",
        '    if [ "${#COMP_WORDS[@]}" -eq 2 ]; then',
        f'        COMPREPLY=($(compgen -W "{" ".join(COMMANDS)}" -- "$cur"))',
        "        return",
        "    fi",
        "",
        '    case "${COMP_WORDS[1]}" in',
    ]

    for command, positions in NAME_POSITIONS.items():
        lines.extend(_case_branch(command, positions))
        if command == 'set':
            lines.append('            if [ "${#COMP_WORDS[@]}" -eq 4 ]; then')
            lines.append(f'                COMPREPLY=($(compgen -W "{fields}" -- "$cur"))')
            lines.append("            fi")
        lines.append("        ;;")

    lines.extend([
        "        dump)",
        '            if [ "${#COMP_WORDS[@]}" -eq 3 ]; then',
        '                COMPREPLY=($(compgen -A directory -- "$cur"))',
        "            fi",
        "        ;;",
        "    esac",
        "}",
        "",
        "complete -F _wgcm_completions wgcm",
    ])

    return '\n'.join(lines) + '\n'
