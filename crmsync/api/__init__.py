"""
API Module - outbound access to the remote CRM and helpdesk modules
"""

from .http_client import ApiResponse, AuthorizedClient
from .targets import CrmModuleClient, DeskModuleClient, FieldMeta, ModuleClient, TargetRegistry
from .lookup import LookupResolver

__all__ = [
    "ApiResponse",
    "AuthorizedClient",
    "CrmModuleClient",
    "DeskModuleClient",
    "FieldMeta",
    "ModuleClient",
    "TargetRegistry",
    "LookupResolver",
]
