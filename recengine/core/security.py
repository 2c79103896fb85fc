def redact_identity(identity: str | None) -> str:
    """
    Redact a caller identity for logging purposes.
    Shows the first 6 characters followed by ***.
    """
    if not identity:
        return "None"
    if len(identity) <= 6:
        return identity
    return f"{identity[:6]}***"
