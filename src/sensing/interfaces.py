"""Collaborator interfaces the detection loops depend on."""

from typing import Protocol

from src.model.models import BehaviorEvent, Capability, SensingResult, TabSnapshot


class EventSource(Protocol):
    def snapshot(self, last_seconds: float) -> list[BehaviorEvent]: ...


class SnapshotSource(Protocol):
    def get(self, application_id: str, max_age: float = ...) -> TabSnapshot | None: ...

    def lookup_application_id(self, app_name: str, max_age: float = ...) -> str: ...


class ReasoningBackend(Protocol):
    def complete(self, prompt: str) -> str | None: ...

    def cancel(self) -> None: ...


class CapabilitySearchBackend(Protocol):
    def search(
        self,
        keywords: list[str],
        limit: int = ...,
        timeout: float | None = ...,
    ) -> list[Capability]: ...

    def cancel(self) -> None: ...


class ResultObserver(Protocol):
    def __call__(self, result: SensingResult) -> None: ...
