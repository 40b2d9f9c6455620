"""docroute: sequential document routing with a hash-chained decision ledger."""

from .blockage import AttentionReport, BlockageDetector, BlockedWorkflowInfo
from .contracts import PackageData, ReturnFileData
from .errors import ErrorKind, OperationResult
from .integrity import IntegrityReport, verify_workflow_integrity
from .models import TemplateStep, WorkflowTemplate
from .packaging import PackageBuilder, build_package_data
from .persistence import get_repository
from .returns import ReturnProcessor, ReturnResult, parse_return_file
from .service import StepConfig, WorkflowService
from .unblock import UnblockService

__version__ = "0.1.0"
__all__ = [
    "BlockageDetector",
    "BlockedWorkflowInfo",
    "AttentionReport",
    "TemplateStep",
    "WorkflowTemplate",
    "PackageData",
    "ReturnFileData",
    "ErrorKind",
    "OperationResult",
    "IntegrityReport",
    "verify_workflow_integrity",
    "PackageBuilder",
    "build_package_data",
    "get_repository",
    "ReturnProcessor",
    "ReturnResult",
    "parse_return_file",
    "StepConfig",
    "WorkflowService",
    "UnblockService",
]
