# fleet_engine/domain/templates/render.py

from typing import Any, Dict


def render_template(template: str, variables: Dict[str, Any]) -> str:
    """
    Replace ``{{name}}`` placeholders.

    Every placeholder left over after substitution is an error, so a typo in a
    template never reaches a unit file or site file.
    """
    rendered = template
    for key, value in variables.items():
        rendered = rendered.replace(f"{{{{{key}}}}}", str(value))

    if "{{" in rendered:
        start = rendered.index("{{")
        end = rendered.find("}}", start)
        raise KeyError(f"unresolved template variable {rendered[start:end + 2]}")

    return rendered
