from services.curator.cross_edition import (
    ID_MATCH,
    TOKEN_OVERLAP,
    TITLE_SIMILARITY,
    URL_MATCH,
    canonicalize_story_url,
    filter_cross_edition,
    find_cross_edition_duplicate,
    token_overlap,
    tokenize_title,
)
from shared.schemas.messages import HistoricalArticleCandidate


def candidate(title, url="https://old.ro/story", id=None):
    return HistoricalArticleCandidate(id=id, title=title, url=url)


def test_canonicalize_story_url():
    assert canonicalize_story_url("https://www.Example.ro/Știri/Parc-Nou/?utm_source=x") == "example.ro/stiri/parc-nou"
    assert canonicalize_story_url("http://example.ro") == "example.ro/"
    assert canonicalize_story_url("https://example.ro/a%20b") == "example.ro/ab"
    assert canonicalize_story_url("not a url") == ""


def test_tokenize_title_drops_short_tokens_and_stopwords():
    assert tokenize_title("Cluj deschide un nou parc pentru copii") == ["cluj", "deschide", "nou", "parc", "copii"]


def test_canonical_url_match_drops_regardless_of_title(make_article):
    article = make_article("Un titlu complet diferit", url="https://www.stiri.ro/parc-nou?fbclid=1")
    history = [candidate("Altceva", url="http://stiri.ro/parc-nou/")]

    match = find_cross_edition_duplicate(article, history)

    assert match is not None
    assert match.reason == URL_MATCH


def test_id_match_wins(make_article):
    article = make_article("Titlu")
    match = find_cross_edition_duplicate(article, [candidate("Nimic comun", id=article.id)])
    assert match.reason == ID_MATCH


def test_title_similarity_match(make_article):
    article = make_article("Orașul X deschide un parc nou", url="https://a.ro/1")
    match = find_cross_edition_duplicate(article, [candidate("Orasul X deschide parc nou", url="https://b.ro/2")])
    assert match.reason == TITLE_SIMILARITY
    assert match.title_similarity >= 0.74


def test_token_overlap_match_on_three_shared_tokens(make_article):
    article = make_article("Cluj deschide un nou parc", url="https://a.ro/1")
    history = [candidate("Cluj a lansat parc nou", url="https://b.ro/2")]

    overlap, common = token_overlap(article.title, history[0].title)
    assert common == 3
    assert overlap == 0.6

    match = find_cross_edition_duplicate(article, history)
    assert match is not None
    assert match.reason == TOKEN_OVERLAP


def test_inflected_tokens_are_not_shared(make_article):
    # "parc" and "parcul" are distinct tokens, so only {cluj, nou} overlap
    article = make_article("Cluj lansează un nou parc", url="https://a.ro/1")
    history = [candidate("Cluj a lansat parcul nou", url="https://b.ro/2")]

    overlap, common = token_overlap(article.title, history[0].title)
    assert common == 2
    assert find_cross_edition_duplicate(article, history) is None


def test_high_overlap_with_two_tokens_is_not_enough(make_article):
    article = make_article("Cluj Timișoara", url="https://a.ro/1")
    history = [candidate("Timișoara Cluj azi", url="https://b.ro/2")]

    overlap, common = token_overlap(article.title, history[0].title)
    assert overlap >= 0.5 and common == 2
    assert find_cross_edition_duplicate(article, history, similarity_threshold=0.99) is None


def test_filter_without_history_keeps_everything(make_article):
    articles = [make_article("Unu"), make_article("Doi")]
    result = filter_cross_edition(articles, [])
    assert result.kept == articles
    assert result.dropped_count == 0


def test_filter_splits_kept_and_dropped(make_article):
    repeat = make_article("Orașul X deschide un parc nou", url="https://a.ro/parc")
    fresh = make_article("Elevii din Iași câștigă olimpiada", url="https://a.ro/olimpiada")
    history = [candidate("Alt titlu", url="https://a.ro/parc")]

    result = filter_cross_edition([repeat, fresh], history)

    assert result.kept == [fresh]
    assert [article for article, _ in result.dropped] == [repeat]
