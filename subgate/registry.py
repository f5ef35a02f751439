"""Submission Registry collaborator.

The Registry owns dictionaries (entity schemas per category), validates
submitted records and manages the submission lifecycle. This module defines
the contract the pipeline relies on and an HTTP implementation of it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from subgate.config import Settings
from subgate.exceptions import RegistryError
from subgate.models import BatchError, BatchErrorType, CreateSubmissionStatus
from subgate.schema import Dictionary

LOGGER = logging.getLogger("subgate.registry")

SUBMISSION_STATUS_VALID = "VALID"


@dataclass
class RegistrySubmitResult:
    """Registry answer to a submit or edit call."""
    status: CreateSubmissionStatus
    submission_id: Optional[int] = None
    description: str = ""
    batch_errors: List[BatchError] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.status == CreateSubmissionStatus.PROCESSING and bool(self.submission_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistrySubmitResult":
        try:
            status = CreateSubmissionStatus(data.get("status"))
        except ValueError:
            status = CreateSubmissionStatus.INVALID_SUBMISSION

        submission_id = data.get("submissionId")
        batch_errors = []
        for item in data.get("batchErrors") or []:
            try:
                error_type = BatchErrorType(item.get("type"))
            except ValueError:
                error_type = BatchErrorType.INCORRECT_SECTION
            batch_errors.append(
                BatchError(
                    type=error_type,
                    message=str(item.get("message", "")),
                    batch_name=str(item.get("batchName", "")),
                )
            )
        return cls(
            status=status,
            submission_id=int(submission_id) if submission_id is not None else None,
            description=str(data.get("description") or ""),
            batch_errors=batch_errors,
        )


@dataclass
class SubmittedRecord:
    """A committed record as reported by the Registry."""
    system_id: str
    entity_name: str = ""
    organization: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmittedRecord":
        return cls(
            system_id=str(data.get("systemId", "")),
            entity_name=str(data.get("entityName", "")),
            organization=str(data.get("organization", "")),
            data=dict(data.get("data") or {}),
        )


@dataclass
class SubmittedDataPage:
    """One page of committed records of a category."""
    records: List[Dict[str, Any]] = field(default_factory=list)
    total_records: int = 0
    error_message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmittedDataPage":
        metadata = data.get("metadata") or {}
        return cls(
            records=list(data.get("result") or []),
            total_records=int(metadata.get("totalRecords") or 0),
            error_message=metadata.get("errorMessage") or None,
        )


@dataclass
class CommitEvent:
    """Post-commit notification emitted once a submission is finalized."""
    category_id: int
    organization: str
    submission_id: int
    inserts: List[SubmittedRecord] = field(default_factory=list)
    updates: List[SubmittedRecord] = field(default_factory=list)
    deletes: List[SubmittedRecord] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommitEvent":
        changes = data.get("data") or {}
        return cls(
            category_id=int(data["categoryId"]),
            organization=str(data.get("organization", "")),
            submission_id=int(data["submissionId"]),
            inserts=[SubmittedRecord.from_dict(r) for r in changes.get("inserts") or []],
            updates=[SubmittedRecord.from_dict(r) for r in changes.get("updates") or []],
            deletes=[SubmittedRecord.from_dict(r) for r in changes.get("deletes") or []],
        )


class SubmissionRegistry(ABC):
    """Contract of the Submission Registry used by the pipeline."""

    @abstractmethod
    def get_active_dictionary_by_category(self, category_id: int) -> Optional[Dictionary]:
        """Active dictionary of a category, or None if unknown."""

    @abstractmethod
    def submit(
        self,
        records: List[Dict[str, Any]],
        entity_name: str,
        category_id: int,
        organization: str,
        username: str,
    ) -> RegistrySubmitResult:
        """Submit new records of one entity."""

    @abstractmethod
    def edit_data(
        self,
        records: List[Dict[str, Any]],
        entity_name: str,
        category_id: int,
        organization: str,
        username: str,
    ) -> RegistrySubmitResult:
        """Submit edits to existing records (identified by systemId)."""

    @abstractmethod
    def delete_active_submission_by_id(self, submission_id: int, username: str) -> None:
        """Delete an active (uncommitted) submission."""

    @abstractmethod
    def commit_submission(self, category_id: int, submission_id: int, username: str) -> Dict[str, Any]:
        """Commit a validated submission."""

    @abstractmethod
    def get_submission_by_id(self, submission_id: int) -> Optional[Dict[str, Any]]:
        """Fetch a submission, or None if it does not exist."""

    @abstractmethod
    def get_submitted_data_by_system_id(self, category_id: int, system_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a committed record, or None if it does not exist."""

    @abstractmethod
    def get_submitted_data_by_category(
        self,
        category_id: int,
        page: int,
        page_size: int,
        entity_names: Optional[List[str]] = None,
    ) -> SubmittedDataPage:
        """Fetch one page of committed records, optionally limited to some entities."""


class HttpSubmissionRegistry(SubmissionRegistry):
    """SubmissionRegistry backed by the Registry's REST API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)
        LOGGER.info("Submission registry bound to %s", self.base_url)

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpSubmissionRegistry":
        return cls(base_url=settings.registry_url, timeout=settings.registry_timeout_seconds)

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, path: str, allow_not_found: bool = False, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            LOGGER.error("Registry %s %s failed: %s", method, url, str(e))
            raise RegistryError(f"Registry request failed: {e}") from e

        if allow_not_found and response.status_code == 404:
            return None
        if not response.is_success:
            LOGGER.error("Registry %s %s returned %s", method, url, response.status_code)
            raise RegistryError(
                f"Registry request failed: {response.status_code} {response.text[:500]}",
                details={"http_status": response.status_code},
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            LOGGER.error("Registry %s %s returned a non-JSON body", method, url)
            raise RegistryError(f"Registry returned an invalid JSON response: {e}") from e

    def get_active_dictionary_by_category(self, category_id: int) -> Optional[Dictionary]:
        data = self._request("GET", f"/category/{category_id}/dictionary", allow_not_found=True)
        if not data:
            return None
        return Dictionary.from_dict(data)

    def _submit_records(
        self,
        method: str,
        records: List[Dict[str, Any]],
        entity_name: str,
        category_id: int,
        organization: str,
        username: str,
    ) -> RegistrySubmitResult:
        body = {
            "records": records,
            "entityName": entity_name,
            "organization": organization,
            "username": username,
        }
        data = self._request(method, f"/submission/category/{category_id}/data", json=body)
        return RegistrySubmitResult.from_dict(data or {})

    def submit(self, records, entity_name, category_id, organization, username) -> RegistrySubmitResult:
        return self._submit_records("POST", records, entity_name, category_id, organization, username)

    def edit_data(self, records, entity_name, category_id, organization, username) -> RegistrySubmitResult:
        return self._submit_records("PUT", records, entity_name, category_id, organization, username)

    def delete_active_submission_by_id(self, submission_id: int, username: str) -> None:
        self._request("DELETE", f"/submission/{submission_id}", params={"username": username})

    def commit_submission(self, category_id: int, submission_id: int, username: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"/submission/category/{category_id}/commit/{submission_id}",
            json={"username": username},
        ) or {}

    def get_submission_by_id(self, submission_id: int) -> Optional[Dict[str, Any]]:
        return self._request("GET", f"/submission/{submission_id}", allow_not_found=True)

    def get_submitted_data_by_system_id(self, category_id: int, system_id: str) -> Optional[Dict[str, Any]]:
        return self._request(
            "GET", f"/data/category/{category_id}/id/{system_id}", allow_not_found=True
        )

    def get_submitted_data_by_category(
        self,
        category_id: int,
        page: int,
        page_size: int,
        entity_names: Optional[List[str]] = None,
    ) -> SubmittedDataPage:
        params: Dict[str, Any] = {"page": page, "pageSize": page_size}
        if entity_names:
            params["entityName"] = list(entity_names)
        data = self._request("GET", f"/data/category/{category_id}", params=params)
        return SubmittedDataPage.from_dict(data or {})
