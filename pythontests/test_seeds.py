import pytest

from groovefinder.seeds import (
    DEFAULT_SEED_GENRES,
    MOOD_TABLE,
    RecommendationQuery,
    RecommendationSeed,
    StoredPreferences,
    apply_mood,
    build_seed,
    split_ids,
    trending_seed,
)


@pytest.mark.parametrize("mood", sorted(MOOD_TABLE))
def test_mood_sets_only_its_own_fields(mood) -> None:
    seed = RecommendationSeed(target_popularity=55, min_tempo=90.0, target_danceability=0.11)
    seed.set_seeds("seed_artists", ["artist-1"])
    before = seed.to_dict()

    assert apply_mood(seed, mood) is True

    after = seed.to_dict()
    expected = dict(before)
    expected.update(MOOD_TABLE[mood])
    assert after == expected


def test_unrecognized_mood_changes_nothing() -> None:
    seed = RecommendationSeed(target_energy=0.2)

    assert apply_mood(seed, "grumpy") is False
    assert seed.to_dict() == {"target_energy": 0.2}


def test_mood_table_is_the_documented_one() -> None:
    assert MOOD_TABLE == {
        "happy": {"target_valence": 0.8, "target_energy": 0.7},
        "sad": {"target_valence": 0.2, "target_energy": 0.3},
        "energetic": {"target_energy": 0.9, "target_danceability": 0.8},
        "chill": {"target_energy": 0.3, "target_valence": 0.5},
        "focus": {"target_energy": 0.4, "target_valence": 0.6, "min_instrumentalness": 0.3},
    }


def test_energetic_without_user_gets_default_genres() -> None:
    seed = build_seed(RecommendationQuery(mood="energetic"))

    assert seed.to_dict() == {
        "seed_genres": ["pop", "rock", "hip-hop"],
        "target_energy": 0.9,
        "target_danceability": 0.8,
    }


def test_explicit_energy_overrides_mood_energy_only() -> None:
    seed = build_seed(RecommendationQuery(mood="happy", energy_level=0.1))

    assert seed.target_valence == 0.8
    assert seed.target_energy == 0.1
    assert seed.target_danceability is None


def test_explicit_levels_override_mood_both_ways() -> None:
    seed = build_seed(RecommendationQuery(mood="energetic", energy_level=0.2, dance_level=0.3))

    assert seed.target_energy == 0.2
    assert seed.target_danceability == 0.3


def test_zero_override_is_applied() -> None:
    seed = build_seed(RecommendationQuery(mood="energetic", energy_level=0.0))

    assert seed.target_energy == 0.0


def test_stored_profile_overwrites_mood_and_explicit_levels() -> None:
    profile = StoredPreferences(energy=0.25, danceability=0.35, valence=0.45, favorite_genres=[])

    seed = build_seed(
        RecommendationQuery(mood="happy", energy_level=0.9, dance_level=0.9, seed_artists="a1,a2"),
        profile,
    )

    assert seed.target_energy == 0.25
    assert seed.target_danceability == 0.35
    assert seed.target_valence == 0.45
    # No favorite genres: the request's seed survives.
    assert seed.seed_artists == ["a1", "a2"]
    assert seed.seed_genres is None


def test_stored_favorite_genres_replace_any_seed_with_first_three() -> None:
    profile = StoredPreferences(
        energy=0.5, danceability=0.5, valence=0.5, favorite_genres=["jazz", "soul", "funk", "disco"]
    )

    seed = build_seed(RecommendationQuery(seed_tracks="t1,t2"), profile)

    assert seed.seed_genres == ["jazz", "soul", "funk"]
    assert seed.seed_tracks is None
    assert seed.seed_artists is None


def test_default_genres_only_when_no_seed_given() -> None:
    assert build_seed(RecommendationQuery()).seed_genres == DEFAULT_SEED_GENRES
    assert build_seed(RecommendationQuery(seed_genres="metal")).seed_genres == ["metal"]
    assert build_seed(RecommendationQuery(seed_artists="a1")).seed_genres is None


def test_first_seed_kind_wins_when_several_are_given() -> None:
    seed = build_seed(RecommendationQuery(seed_artists="a1", seed_tracks="t1"))

    assert seed.seed_artists == ["a1"]
    assert seed.seed_tracks is None


def test_seed_lists_are_split_trimmed_and_capped() -> None:
    assert split_ids(" pop, rock ,,jazz ") == ["pop", "rock", "jazz"]
    assert split_ids(None) == []

    seed = build_seed(RecommendationQuery(seed_genres="a,b,c,d,e,f,g"))
    assert seed.seed_genres == ["a", "b", "c", "d", "e"]


def test_to_params_only_serializes_wire_fields() -> None:
    seed = build_seed(RecommendationQuery(mood="focus"))
    seed.min_energy = 0.1
    seed.max_valence = 1.0

    assert seed.to_params() == {
        "seed_genres": "pop,rock,hip-hop",
        "target_energy": "0.4",
        "target_valence": "0.6",
        "min_energy": "0.1",
        "max_valence": "1",
    }
    assert seed.to_dict()["min_instrumentalness"] == 0.3


def test_set_seeds_rejects_unknown_kind() -> None:
    with pytest.raises(ValueError):
        RecommendationSeed().set_seeds("seed_moods", ["x"])


def test_trending_seed() -> None:
    seed = trending_seed()

    assert seed.to_params() == {"seed_genres": "pop,hip-hop,electronic", "target_popularity": "80"}
