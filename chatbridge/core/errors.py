class BridgeError(Exception):
    pass


class SendFailed(BridgeError):
    pass


class DeleteNotFound(BridgeError):
    """The message is already gone upstream."""

    def __init__(self, message_id: str):
        super().__init__(f"message {message_id} not found")
        self.message_id = message_id


class DeleteFailed(BridgeError):
    def __init__(self, message_id: str, detail: str = ""):
        super().__init__(f"failed to delete message {message_id}: {detail}".rstrip(": "))
        self.message_id = message_id
        self.detail = detail
