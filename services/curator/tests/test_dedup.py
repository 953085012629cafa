from datetime import datetime, timezone

import pytest

from services.curator.dedup import (
    deduplicate_articles,
    group_articles,
    normalize_title,
    pick_representative,
    title_similarity,
)


@pytest.mark.parametrize("title", [
    "Orașul X deschide un parc nou",
    "",
    "!!!",
    "Cluj-Napoca: 100 de copaci plantați",
])
def test_title_similarity_is_one_for_identical_titles(title):
    assert title_similarity(title, title) == 1.0


def test_normalize_title_strips_diacritics_and_punctuation():
    assert normalize_title("  Orașul   X deschide parc nou! ") == "orasul x deschide parc nou"
    assert normalize_title("Țară, ȘCOALĂ și pâine") == "tara scoala si paine"


def test_near_identical_titles_form_one_cluster(make_article):
    first = make_article("Orașul X deschide un parc nou", source_id="a")
    second = make_article("Orasul X deschide parc nou!", source_id="b")

    result = deduplicate_articles([first, second], threshold=0.7)

    assert result.output_count == 1
    assert len(result.clusters) == 1
    assert result.clusters[0].similarity >= 0.9
    assert set([result.clusters[0].kept] + result.clusters[0].merged) == {first.id, second.id}


def test_unrelated_titles_are_kept(make_article):
    articles = [
        make_article("Orașul X deschide un parc nou"),
        make_article("Elevii din Iași câștigă olimpiada de matematică"),
        make_article("Un nou tren electric pe ruta București-Constanța"),
    ]

    result = deduplicate_articles(articles, threshold=0.7)

    assert result.output_articles == articles
    assert result.clusters == []


def test_counts_are_conserved(make_article):
    articles = [
        make_article("Orașul X deschide un parc nou", source_id="a"),
        make_article("Orasul X deschide parc nou!", source_id="b"),
        make_article("Orașul X deschide un parc nou azi", source_id="c"),
        make_article("Elevii din Iași câștigă olimpiada de matematică"),
        make_article("Elevii din Iasi castiga olimpiada de matematica", source_id="d"),
        make_article("Un nou tren electric pe ruta București-Constanța"),
    ]

    result = deduplicate_articles(articles, threshold=0.7)

    assert result.input_count == len(articles)
    assert result.output_count <= result.input_count
    assert result.output_count == len(result.output_articles)

    merged = sum(len(c.merged) for c in result.clusters)
    assert result.output_count + merged == result.input_count

    kept_ids = {a.id for a in result.output_articles}
    for cluster in result.clusters:
        assert cluster.kept in kept_ids
        assert not set(cluster.merged) & kept_ids


def test_representative_prefers_longer_summary(make_article):
    short = make_article("Parc nou in Cluj", summary="scurt", source_id="a")
    rich = make_article("Parc nou în Cluj", summary="un rezumat mult mai bogat", source_id="b")

    result = deduplicate_articles([short, rich], threshold=0.7)

    assert result.output_articles == [rich]
    assert result.clusters[0].kept == rich.id
    assert result.clusters[0].merged == [short.id]


def test_representative_tie_breaks_on_recency_then_first_seen(make_article):
    older = make_article("A", source_id="a", published_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
    newer = make_article("A", source_id="b", published_at=datetime(2026, 1, 5, tzinfo=timezone.utc))
    undated = make_article("A", source_id="c")

    assert pick_representative([older, newer]) is newer
    assert pick_representative([undated, make_article("A", source_id="d")]) is undated


def test_grouping_compares_against_the_seed_only(make_article):
    # a~b and b~c at 0.7 similarity, but a and c are only 0.4 similar
    a = make_article("aaaaaaaaaa")
    b = make_article("aaaaaaabbb")
    c = make_article("aaaabbbbbb")

    assert [len(g) for g in group_articles([a, b, c], threshold=0.65)] == [2, 1]
    assert [len(g) for g in group_articles([b, a, c], threshold=0.65)] == [3]
