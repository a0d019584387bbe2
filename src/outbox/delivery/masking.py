"""Recipient masking for log output."""


def mask_recipient(recipient: str | None) -> str | None:
    """Mask an email address or phone number before it is logged.

    Emails keep the first two characters of the local part and the domain
    (``jo***@example.com``); phone numbers keep the first three and last two
    characters (``+14***67``). Anything else is returned unchanged.
    """
    if not recipient:
        return recipient

    if "@" in recipient:
        local_part, _, domain = recipient.partition("@")
        return f"{local_part[:2]}***@{domain}"

    if recipient.startswith("+"):
        return f"{recipient[:3]}***{recipient[-2:]}"

    return recipient
