"""Extension version parsing.

Versions are dotted integers ("1", "0.4.2"); missing components compare as 0,
so "1.2" == "1.2.0".
"""


def parse_version(version: str) -> tuple[int, ...]:
    """Parse a dotted version string into a comparable tuple.

    Raises:
        ValueError: If a component is not a non-negative integer.
    """
    text = version.strip().lstrip("v")
    if not text:
        raise ValueError("Empty version")
    parts = []
    for part in text.split("."):
        if not part.isdigit():
            raise ValueError(f"Invalid version component {part!r} in {version!r}")
        parts.append(int(part))
    while len(parts) > 1 and parts[-1] == 0:
        parts.pop()
    return tuple(parts)


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as a is older than, equal to, or newer than b."""
    pa, pb = parse_version(a), parse_version(b)
    return (pa > pb) - (pa < pb)
