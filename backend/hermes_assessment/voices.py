"""
Voice registry for synthesized listening dialogues.

Every dialogue is rendered with two prebuilt TTS voices. Selection prefers one
female and one male timbre so that learners can tell the speakers apart.
"""

from __future__ import annotations

import random
from typing import List, Optional, Sequence

from .schemas import VoiceProfile


VOICE_REGISTRY: List[VoiceProfile] = [
    VoiceProfile(name="zephyr", gender="female", style_tag="Bright"),
    VoiceProfile(name="puck", gender="male", style_tag="Upbeat"),
    VoiceProfile(name="charon", gender="male", style_tag="Informative"),
    VoiceProfile(name="kore", gender="female", style_tag="Firm"),
    VoiceProfile(name="fenrir", gender="male", style_tag="Excitable"),
    VoiceProfile(name="leda", gender="female", style_tag="Youthful"),
    VoiceProfile(name="orus", gender="male", style_tag="Firm"),
    VoiceProfile(name="aoede", gender="female", style_tag="Breezy"),
    VoiceProfile(name="callirrhoe", gender="female", style_tag="Easy-going"),
    VoiceProfile(name="autonoe", gender="female", style_tag="Bright"),
    VoiceProfile(name="enceladus", gender="male", style_tag="Breathy"),
    VoiceProfile(name="iapetus", gender="male", style_tag="Clear"),
    VoiceProfile(name="umbriel", gender="male", style_tag="Easy-going"),
    VoiceProfile(name="algieba", gender="male", style_tag="Smooth"),
    VoiceProfile(name="despina", gender="female", style_tag="Smooth"),
    VoiceProfile(name="erinome", gender="female", style_tag="Clear"),
    VoiceProfile(name="algenib", gender="male", style_tag="Gravelly"),
    VoiceProfile(name="rasalgethi", gender="male", style_tag="Informative"),
    VoiceProfile(name="laomedeia", gender="female", style_tag="Upbeat"),
    VoiceProfile(name="achernar", gender="female", style_tag="Soft"),
    VoiceProfile(name="alnilam", gender="male", style_tag="Firm"),
    VoiceProfile(name="schedar", gender="male", style_tag="Even"),
    VoiceProfile(name="gacrux", gender="female", style_tag="Mature"),
    VoiceProfile(name="pulcherrima", gender="male", style_tag="Forward"),
    VoiceProfile(name="achird", gender="male", style_tag="Friendly"),
    VoiceProfile(name="zubenelgenubi", gender="male", style_tag="Casual"),
    VoiceProfile(name="vindemiatrix", gender="female", style_tag="Gentle"),
    VoiceProfile(name="sadachbia", gender="male", style_tag="Lively"),
    VoiceProfile(name="sadaltager", gender="male", style_tag="Knowledgeable"),
    VoiceProfile(name="sulafat", gender="female", style_tag="Warm"),
]


def select_dialogue_voices(
    rng: Optional[random.Random] = None,
    registry: Sequence[VoiceProfile] = VOICE_REGISTRY,
) -> List[VoiceProfile]:
    """
    Pick the two voices used for a dialogue.

    One female and one male profile are drawn when both pools are non-empty.
    Remaining slots are filled from the rest of the registry without repeating
    a name; a profile repeats only when the registry holds fewer than two.

    Args:
        rng: Random source; pass a seeded `random.Random` for reproducible picks
        registry: Voice catalog to draw from

    Returns:
        List[VoiceProfile]: Exactly two profiles (empty if the registry is empty)
    """
    rng = rng or random.Random()
    if not registry:
        return []

    selected: List[VoiceProfile] = []
    female = [v for v in registry if v.gender == "female"]
    male = [v for v in registry if v.gender == "male"]
    if female:
        selected.append(rng.choice(female))
    if male:
        selected.append(rng.choice(male))

    remaining = [v for v in registry if v.name not in {s.name for s in selected}]
    while len(selected) < 2 and remaining:
        pick = rng.choice(remaining)
        selected.append(pick)
        remaining.remove(pick)

    # Registry too small for two distinct names
    while len(selected) < 2:
        selected.append(selected[0])
    return selected[:2]
