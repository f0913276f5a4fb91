import random

from hermes_assessment.schemas import VoiceProfile
from hermes_assessment.voices import VOICE_REGISTRY, select_dialogue_voices


def test_registry_names_are_unique_and_lowercase():
    names = [v.name for v in VOICE_REGISTRY]
    assert len(names) == len(set(names)) == 30
    assert all(n == n.lower() for n in names)


def test_selection_prefers_one_female_and_one_male():
    for seed in range(20):
        first, second = select_dialogue_voices(random.Random(seed))
        assert first.name != second.name
        assert {first.gender, second.gender} == {"female", "male"}


def test_selection_is_reproducible_with_seed():
    a = select_dialogue_voices(random.Random(42))
    b = select_dialogue_voices(random.Random(42))
    assert a == b


def test_single_gender_registry_still_gives_distinct_voices():
    registry = [v for v in VOICE_REGISTRY if v.gender == "female"]
    first, second = select_dialogue_voices(random.Random(1), registry)
    assert first.name != second.name


def test_tiny_registry_repeats_only_when_needed():
    solo = [VoiceProfile(name="kore", gender="female", style_tag="Firm")]
    assert [v.name for v in select_dialogue_voices(random.Random(0), solo)] == ["kore", "kore"]
    assert select_dialogue_voices(random.Random(0), []) == []
