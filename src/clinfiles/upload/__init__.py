"""Attachment upload pipeline: staging, three-phase transfer, batch commit.

Public API
----------
.. autoclass:: StagingQueue
.. autoclass:: UploadCoordinator
.. autoclass:: BatchUploadSession
.. autoclass:: BatchResult
.. autoclass:: HttpMetadataRegistrar
.. autoclass:: HttpStorageGateway
.. autoclass:: UploadProgressTracker
"""

from clinfiles.upload.coordinator import UploadCoordinator
from clinfiles.upload.fsm import UploadAttemptSM, create_fsm
from clinfiles.upload.pacing import PacingConfig, UploadPacer
from clinfiles.upload.payload import FilePayload, InMemoryPayload, LocalFilePayload
from clinfiles.upload.progress import UploadProgressTracker
from clinfiles.upload.queue import StagingQueue
from clinfiles.upload.registrar import HttpMetadataRegistrar, MetadataRegistrar
from clinfiles.upload.schemas import ClinicalFileRecord, TransferSlot
from clinfiles.upload.session import BatchResult, BatchUploadSession, build_session
from clinfiles.upload.storage import HttpStorageGateway, StorageGateway, TransferResult

__all__ = [
    "BatchResult",
    "BatchUploadSession",
    "ClinicalFileRecord",
    "FilePayload",
    "HttpMetadataRegistrar",
    "HttpStorageGateway",
    "InMemoryPayload",
    "LocalFilePayload",
    "MetadataRegistrar",
    "PacingConfig",
    "StagingQueue",
    "StorageGateway",
    "TransferResult",
    "TransferSlot",
    "UploadAttemptSM",
    "UploadCoordinator",
    "UploadPacer",
    "UploadProgressTracker",
    "build_session",
    "create_fsm",
]
