"""
Digital inspection capture.

Walks the host and renter through a fixed, ordered set of camera angles at
handover and at return. Return inspections also record a clean / issue
judgment per angle, compared against the handover photo of the same angle
when one exists.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from p2p_rental.constants import ListingCategory
from p2p_rental.errors import StepBlockedError, SessionClosedError
from p2p_rental.services.pricing import is_jet_ski

logger = logging.getLogger(__name__)

HANDOVER = 'handover'
RETURN = 'return'

CLEAN = 'clean'
ISSUE_DETECTED = 'issue-detected'
JUDGMENTS = (CLEAN, ISSUE_DETECTED)


@dataclass(frozen=True)
class Angle:
    angle_id: str
    label: str
    description: str = ''


STANDARD_ANGLES = (
    Angle('front', 'Front', 'Full front view.'),
    Angle('right', 'Right Side', 'Full length of the right side.'),
    Angle('left', 'Left Side', 'Full length of the left side.'),
    Angle('rear', 'Rear', 'Full rear view.'),
)

MARINE_ANGLES = (
    Angle('bow', 'Hull (Front/Bow)', 'Nose and front hull, check for impact marks.'),
    Angle('hull_bottom', 'Hull (Underside)', 'Underneath, check for beaching scratches.'),
    Angle('prop', 'Propeller/Intake', 'Blades and intake, check for chips or bends.'),
    Angle('starboard', 'Right Side', 'Full length view.'),
    Angle('port', 'Left Side', 'Full length view.'),
)

VEHICLE_ANGLES = (
    Angle('front', 'Front', 'Front view including headlights.'),
    Angle('driver_side', 'Driver Side', 'Full side view, check panels.'),
    Angle('passenger_side', 'Passenger Side', 'Full side view.'),
    Angle('rear', 'Rear', 'Back view and exhaust.'),
    Angle('wheels', 'Wheels/Tires', 'Check rims for curb rash.'),
)

GENERIC_ANGLES = (
    Angle('overall', 'Overall Item', 'Full view of the item.'),
    Angle('detail_1', 'Detail / Accessories', 'Any included accessories.'),
)

FUEL_ANGLE = Angle('fuel_dash', 'Fuel Gauge / Dash', 'Fuel level and mileage or engine hours.')


def angles_for_listing(category: str, subcategory: Optional[str] = None) -> Tuple[Angle, ...]:
    """Category-specific angle set, with a fuel shot for motorised items"""
    marine = category == ListingCategory.BOATS or is_jet_ski(category, subcategory)
    vehicle = category in (ListingCategory.RVS, ListingCategory.ATVS_UTVS, ListingCategory.MOTORCYCLES)

    if marine:
        angles = MARINE_ANGLES
    elif vehicle:
        angles = VEHICLE_ANGLES
    else:
        angles = GENERIC_ANGLES

    if marine or vehicle:
        angles = angles + (FUEL_ANGLE,)
    return angles


@dataclass(frozen=True)
class InspectionPhoto:
    url: str
    angle_id: str
    angle_label: str
    timestamp: datetime
    taken_by_user_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'url': self.url,
            'angle_id': self.angle_id,
            'angle_label': self.angle_label,
            'timestamp': self.timestamp.isoformat(),
            'taken_by_user_id': self.taken_by_user_id,
            'latitude': self.latitude,
            'longitude': self.longitude,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'InspectionPhoto':
        return cls(
            url=data['url'],
            angle_id=data['angle_id'],
            angle_label=data.get('angle_label', data['angle_id']),
            timestamp=datetime.fromisoformat(data['timestamp']),
            taken_by_user_id=str(data.get('taken_by_user_id', '')),
            latitude=data.get('latitude'),
            longitude=data.get('longitude'),
        )


@dataclass(frozen=True)
class InspectionResult:
    mode: str
    photos: Tuple[InspectionPhoto, ...]
    damage_reported: bool
    judgments: Dict[str, str] = field(default_factory=dict)


class InspectionCapture:
    """One pass over the angle sequence, either at handover or at return"""

    def __init__(self, mode: str, angles: Sequence[Angle] = STANDARD_ANGLES,
                 reference_photos: Optional[Sequence] = None, clock=datetime.utcnow):
        if mode not in (HANDOVER, RETURN):
            raise ValueError(f'Unknown inspection mode: {mode}')
        if not angles:
            raise ValueError('An inspection needs at least one angle')
        self._mode = mode
        self._angles = tuple(angles)
        self._clock = clock
        self._step = 0
        self._photos: Dict[str, InspectionPhoto] = {}
        self._judgments: Dict[str, str] = {}
        self._cancelled = False
        self._references = self._index_references(reference_photos or ())

    def _index_references(self, reference_photos) -> Dict[str, str]:
        references = {}
        for index, ref in enumerate(reference_photos):
            if isinstance(ref, InspectionPhoto):
                references[ref.angle_id] = ref.url
            elif index < len(self._angles):
                references[self._angles[index].angle_id] = ref
        return references

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def angles(self) -> Tuple[Angle, ...]:
        return self._angles

    @property
    def step(self) -> int:
        return self._step

    @property
    def current_angle(self) -> Optional[Angle]:
        if self._step < len(self._angles):
            return self._angles[self._step]
        return None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def has_references(self) -> bool:
        return bool(self._references)

    def _check_open(self):
        if self._cancelled:
            raise SessionClosedError('Inspection was cancelled')

    def _angle_at(self, angle_index: int) -> Angle:
        if angle_index < 0 or angle_index >= len(self._angles):
            raise ValueError(f'Angle index out of range: {angle_index}')
        return self._angles[angle_index]

    def photo_for(self, angle_index: int) -> Optional[InspectionPhoto]:
        return self._photos.get(self._angle_at(angle_index).angle_id)

    def judgment_for(self, angle_index: int) -> Optional[str]:
        return self._judgments.get(self._angle_at(angle_index).angle_id)

    def reference_for(self, angle_index: int) -> Optional[str]:
        """Handover photo for the same angle; None means unaided comparison"""
        return self._references.get(self._angle_at(angle_index).angle_id)

    def capture(self, angle_index: int, photo_url: str, taken_by_user_id,
                latitude: Optional[float] = None, longitude: Optional[float] = None) -> InspectionPhoto:
        """Record the photo for an angle, replacing any earlier take"""
        self._check_open()
        angle = self._angle_at(angle_index)
        if angle_index > self._step:
            raise StepBlockedError(f'Capture {self._angles[self._step].label} before {angle.label}')
        if not photo_url:
            raise StepBlockedError('A photo is required')

        photo = InspectionPhoto(
            url=photo_url,
            angle_id=angle.angle_id,
            angle_label=angle.label,
            timestamp=self._clock(),
            taken_by_user_id=str(taken_by_user_id),
            latitude=latitude,
            longitude=longitude,
        )
        retake = angle.angle_id in self._photos
        self._photos[angle.angle_id] = photo
        # A new photo has to be compared again
        self._judgments.pop(angle.angle_id, None)
        logger.info(f"{self._mode} inspection: {'retook' if retake else 'captured'} angle {angle.angle_id}")
        return photo

    def judge(self, angle_index: int, judgment: str) -> None:
        """Return mode only: mark an angle clean or issue-detected"""
        self._check_open()
        if self._mode != RETURN:
            raise StepBlockedError('Judgments are only recorded during return inspections')
        if judgment not in JUDGMENTS:
            raise ValueError(f'Unknown judgment: {judgment}')
        angle = self._angle_at(angle_index)
        if angle.angle_id not in self._photos:
            raise StepBlockedError(f'Capture {angle.label} before judging it')
        self._judgments[angle.angle_id] = judgment

    def _missing_for(self, angle: Angle) -> Optional[str]:
        if angle.angle_id not in self._photos:
            return f'Photo of {angle.label} is missing'
        if self._mode == RETURN and angle.angle_id not in self._judgments:
            return f'{angle.label} has not been compared against the handover photo'
        return None

    def blocked_reason(self) -> Optional[str]:
        if self._cancelled:
            return 'Inspection was cancelled'
        angle = self.current_angle
        if angle is None:
            return 'All angles have been captured'
        return self._missing_for(angle)

    def can_advance(self) -> bool:
        return self.blocked_reason() is None

    def advance(self) -> Optional[Angle]:
        """Move to the next angle; returns it, or None after the last one"""
        self._check_open()
        reason = self.blocked_reason()
        if reason:
            raise StepBlockedError(reason)
        self._step += 1
        return self.current_angle

    @property
    def is_complete(self) -> bool:
        if self._cancelled or self._step < len(self._angles):
            return False
        return all(self._missing_for(angle) is None for angle in self._angles)

    @property
    def damage_reported(self) -> bool:
        return any(judgment == ISSUE_DETECTED for judgment in self._judgments.values())

    def result(self) -> InspectionResult:
        self._check_open()
        if not self.is_complete:
            missing = [self._missing_for(angle) for angle in self._angles]
            reason = next((m for m in missing if m), 'Walk through every angle first')
            raise StepBlockedError(reason)
        photos = tuple(self._photos[angle.angle_id] for angle in self._angles)
        return InspectionResult(self._mode, photos, self.damage_reported, dict(self._judgments))

    def cancel(self) -> None:
        """Abort without keeping any captured photo"""
        self._photos.clear()
        self._judgments.clear()
        self._cancelled = True
        logger.info(f"{self._mode} inspection cancelled at step {self._step}")

    def to_dict(self) -> dict:
        angles = []
        for index, angle in enumerate(self._angles):
            photo = self._photos.get(angle.angle_id)
            angles.append({
                'index': index,
                'angle_id': angle.angle_id,
                'label': angle.label,
                'description': angle.description,
                'photo': photo.to_dict() if photo else None,
                'judgment': self._judgments.get(angle.angle_id),
                'reference_url': self._references.get(angle.angle_id),
            })
        return {
            'mode': self._mode,
            'step': self._step,
            'angles': angles,
            'complete': self.is_complete,
            'cancelled': self._cancelled,
            'damage_reported': self.damage_reported,
            'blocked_reason': None if self.is_complete else self.blocked_reason(),
        }


def photos_to_dicts(photos: Sequence[InspectionPhoto]) -> List[dict]:
    return [photo.to_dict() for photo in photos]
