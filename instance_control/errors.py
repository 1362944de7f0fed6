class PreconditionViolation(ValueError):
    def __init__(self, instance: str, action: str, detail: str):
        self.instance = instance
        self.action = action
        self.detail = detail
        super().__init__(detail)


class UnsupportedOperation(RuntimeError):
    def __init__(self, instance: str, action: str, detail: str):
        self.instance = instance
        self.action = action
        self.detail = detail
        super().__init__(detail)


class InstanceStartError(RuntimeError):
    def __init__(self, instance: str, detail: str):
        self.instance = instance
        self.detail = detail
        super().__init__(f"{instance}: {detail}")
