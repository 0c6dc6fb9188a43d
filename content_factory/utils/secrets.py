"""Helper utilities for working with secret environment variables."""

from __future__ import annotations

from pydantic import SecretStr


def secret_value(value: SecretStr | str | None) -> str | None:
    """Return the plaintext secret stripped of whitespace."""
    if value is None:
        return None
    raw = value.get_secret_value() if isinstance(value, SecretStr) else value
    stripped = raw.strip()
    return stripped or None


def redact(text: str, *secrets: SecretStr | str | None) -> str:
    """Mask every known secret occurring in ``text`` (URLs, provider error bodies)."""
    for secret in secrets:
        plain = secret_value(secret)
        if plain:
            text = text.replace(plain, "***")
    return text
