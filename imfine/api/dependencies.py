"""Service dependencies shared by the route modules."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from ..core import SessionDep, get_settings
from ..services import (
    ChannelRegistry,
    CheckinEngine,
    ContactDirectory,
    DispatchEngine,
    LinkingProtocol,
    SubjectService,
    build_channels,
)


@lru_cache
def get_channels() -> ChannelRegistry:
    """Production channel adapters, built once from settings."""
    return build_channels(get_settings())


ChannelsDep = Annotated[ChannelRegistry, Depends(get_channels)]


def get_dispatch_engine(session: SessionDep, channels: ChannelsDep) -> DispatchEngine:
    return DispatchEngine(session, channels)


DispatchEngineDep = Annotated[DispatchEngine, Depends(get_dispatch_engine)]


def get_checkin_engine(session: SessionDep, dispatcher: DispatchEngineDep) -> CheckinEngine:
    return CheckinEngine(session, dispatcher)


def get_contact_directory(session: SessionDep) -> ContactDirectory:
    return ContactDirectory(session)


ContactDirectoryDep = Annotated[ContactDirectory, Depends(get_contact_directory)]


def get_linking_protocol(
    session: SessionDep,
    dispatcher: DispatchEngineDep,
    directory: ContactDirectoryDep,
) -> LinkingProtocol:
    return LinkingProtocol(session, dispatcher, directory=directory)


def get_subject_service(session: SessionDep) -> SubjectService:
    return SubjectService(session)


CheckinEngineDep = Annotated[CheckinEngine, Depends(get_checkin_engine)]
LinkingProtocolDep = Annotated[LinkingProtocol, Depends(get_linking_protocol)]
SubjectServiceDep = Annotated[SubjectService, Depends(get_subject_service)]
