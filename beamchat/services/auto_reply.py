class AutoReplyService:
    """Canned stand-in for the remote party. Quotes the start of what was sent."""

    preview_length = 20

    def reply(self, message: str) -> str:
        preview = message[: self.preview_length]
        if len(message) > self.preview_length:
            preview = f"{preview}..."
        return f'Reply to: "{preview}"'
