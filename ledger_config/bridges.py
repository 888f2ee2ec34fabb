"""
Config -> Kernel Bridges.

Functions that convert an EngineConfig into kernel inputs.  These live in
ledger_config (the producer) because the kernel must NEVER import
ledger_config.

Usage:
    config = get_active_config()
    authority = build_approval_authority(config)
    numbering = build_numbering_service(config, session_factory)
"""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from ledger_config.schema import EngineConfig
from ledger_kernel.domain.authority import RoleApprovalAuthority
from ledger_kernel.services.sequence_service import NumberingService


def build_approval_authority(config: EngineConfig) -> RoleApprovalAuthority:
    return RoleApprovalAuthority(
        approval_authority=config.approval_authority,
        administrative_roles=config.administrative_roles,
    )


def build_numbering_service(
    config: EngineConfig,
    session_factory: sessionmaker[Session],
) -> NumberingService:
    return NumberingService(
        session_factory,
        prefixes=config.numbering.prefixes,
        statement_prefix=config.numbering.statement_prefix,
        sequence_width=config.numbering.sequence_width,
    )
