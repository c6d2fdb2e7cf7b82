def require_positive_int(v: int, name: str = "value") -> None:
    if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
        raise ValueError(f"{name} must be a positive integer")


def require_text(v: str | None, name: str = "value") -> str:
    if v is None or not str(v).strip():
        raise ValueError(f"{name} is required")
    return str(v).strip()
