from __future__ import annotations


class DuplicateJobError(RuntimeError):
    def __init__(self, name: str) -> None:
        super().__init__(f"job {name} is already registered")
        self.name = name


class UnknownJobError(RuntimeError):
    def __init__(self, name: str) -> None:
        super().__init__(f"job {name} not found")
        self.name = name


class JobExecutionError(RuntimeError):
    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"job {name} failed: {message}")
        self.name = name
        self.message = message


class ExternalFetchError(RuntimeError):
    def __init__(self, url: str, detail: str, *, status_code: int | None = None) -> None:
        suffix = f" status={status_code}" if status_code is not None else ""
        super().__init__(f"fetch failed url={url}{suffix} detail={detail}")
        self.url = url
        self.status_code = status_code
