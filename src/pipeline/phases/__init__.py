"""The five extraction phases and the registry the processor dispatches on."""

from src.models.phases import PhaseName
from src.pipeline.phases.artist_phase import ArtistPhase
from src.pipeline.phases.assembly_phase import AssemblyPhase
from src.pipeline.phases.base import BasePhase, parse_json_response
from src.pipeline.phases.event_phase import EventPhase
from src.pipeline.phases.type_phase import TypePhase
from src.pipeline.phases.venue_phase import VenuePhase

PHASE_REGISTRY: dict[PhaseName, type[BasePhase]] = {
    PhaseName.TYPE: TypePhase,
    PhaseName.ARTIST: ArtistPhase,
    PhaseName.VENUE: VenuePhase,
    PhaseName.EVENT: EventPhase,
    PhaseName.ASSEMBLY: AssemblyPhase,
}

__all__ = [
    "PHASE_REGISTRY",
    "ArtistPhase",
    "AssemblyPhase",
    "BasePhase",
    "EventPhase",
    "TypePhase",
    "VenuePhase",
    "parse_json_response",
]
