"""Pydantic schemas for Freesound API payloads."""

from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


# Broad Sound Taxonomy categories accepted by the upload endpoint
BST_CATEGORIES: Dict[str, str] = {
    "m-sp": "Music: Solo percussion",
    "m-si": "Music: Solo instrument",
    "m-m": "Music: Multiple instruments",
    "m-other": "Music: Other",
    "is-p": "Instrument Samples: Percussion",
    "is-s": "Instrument Samples: String",
    "is-w": "Instrument Samples: Wind",
    "is-k": "Instrument Samples: Piano/Keyboard",
    "is-e": "Instrument Samples: Synths/Electronic",
    "is-other": "Instrument Samples: Other",
    "sp-s": "Speech: Solo speech",
    "sp-c": "Speech: Conversation/Crowd",
    "sp-p": "Speech: Processed/Synthetic",
    "sp-other": "Speech: Other",
    "fx-o": "Sound Effects: Objects/House appliances",
    "fx-v": "Sound Effects: Vehicles",
    "fx-m": "Sound Effects: Mechanisms/Engines/Machines",
    "fx-h": "Sound Effects: Human sounds and actions",
    "fx-a": "Sound Effects: Animals",
    "fx-n": "Sound Effects: Natural elements/Explosions",
    "fx-el": "Sound Effects: Electronic/Design",
    "fx-ex": "Sound Effects: Experimental",
    "fx-other": "Sound Effects: Other",
    "ss-n": "Soundscapes: Nature",
    "ss-i": "Soundscapes: Indoors",
    "ss-u": "Soundscapes: Urban",
    "ss-s": "Soundscapes: Synthetic/Artificial",
    "ss-other": "Soundscapes: Other",
}

LICENSES = ("Attribution", "Attribution NonCommercial", "Creative Commons 0")


class FreesoundUser(BaseModel):
    """Authenticated Freesound user (subset of /me/)."""

    model_config = ConfigDict(extra="ignore")

    username: str
    about: Optional[str] = None
    num_sounds: Optional[int] = None


class FreesoundSound(BaseModel):
    """A sound as returned by the search and sound endpoints."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    tags: List[str] = Field(default_factory=list)
    description: str = ""
    duration: Optional[float] = None
    license: Optional[str] = None
    username: Optional[str] = None
    download: Optional[str] = None


class FreesoundSoundsResponse(BaseModel):
    """Paginated list of sounds."""

    model_config = ConfigDict(extra="ignore")

    count: int = 0
    next: Optional[str] = None
    previous: Optional[str] = None
    results: List[FreesoundSound] = Field(default_factory=list)


class PendingSound(BaseModel):
    """A sound still going through Freesound's upload pipeline."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    name: Optional[str] = None
    processing_state: Optional[str] = None


class PendingUploadsResponse(BaseModel):
    """Response of /sounds/pending_uploads/."""

    model_config = ConfigDict(extra="ignore")

    pending_description: List[PendingSound] = Field(default_factory=list)
    pending_processing: List[PendingSound] = Field(default_factory=list)
    pending_moderation: List[PendingSound] = Field(default_factory=list)

    @staticmethod
    def _ids(sounds: List[PendingSound]) -> set:
        return {s.id for s in sounds if s.id is not None}

    @property
    def processing_ids(self) -> set:
        return self._ids(self.pending_processing)

    @property
    def moderation_ids(self) -> set:
        return self._ids(self.pending_moderation)

    @property
    def description_ids(self) -> set:
        return self._ids(self.pending_description)


class UploadParams(BaseModel):
    """Fields of a sound upload."""

    audio_file: bytes
    filename: str
    name: str
    tags: List[str]
    description: str
    license: str = "Creative Commons 0"
    bst_category: str = "fx-other"


class UploadResponse(BaseModel):
    """Response of /sounds/upload/."""

    model_config = ConfigDict(extra="ignore")

    id: int


class TokenResponse(BaseModel):
    """OAuth token response from the token proxy."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 86400
    token_type: str = "Bearer"
    scope: Optional[str] = None
