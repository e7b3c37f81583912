from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from processor.normalizer import normalize_ad
from processor.ranking import ranking_key, sort_by_hotness, summarize_sources


def _ad(ad_id, score, count, days, **extra):
    return {
        "id": ad_id,
        "hotness_score": score,
        "collation_count": count,
        "days_running": days,
        **extra,
    }


def test_sorts_by_score_then_variants_then_days():
    ads = [
        _ad("low", 1, 9, 300),
        _ad("mid_few", 3, 2, 50),
        _ad("mid_many_short", 3, 5, 1),
        _ad("mid_many_long", 3, 5, 20),
        _ad("top", 5, 1, 0),
    ]
    ranked = sort_by_hotness(ads)
    assert [ad["id"] for ad in ranked] == [
        "top", "mid_many_long", "mid_many_short", "mid_few", "low",
    ]


def test_result_is_ordered_for_every_adjacent_pair():
    ads = [_ad(str(i), (i * 7) % 5 + 1, (i * 3) % 4 + 1, (i * 11) % 40) for i in range(30)]
    ranked = sort_by_hotness(ads)
    for left, right in zip(ranked, ranked[1:]):
        assert ranking_key(left) >= ranking_key(right)


def test_equal_keys_keep_producer_order():
    ads = [_ad(name, 2, 2, 10) for name in ("first", "second", "third")]
    assert [ad["id"] for ad in sort_by_hotness(ads)] == ["first", "second", "third"]


def test_sorting_is_idempotent():
    ads = [_ad("a", 2, 1, 5), _ad("b", 4, 1, 5), _ad("c", 2, 3, 5)]
    once = sort_by_hotness(ads)
    assert sort_by_hotness(once) == once
    # input list untouched
    assert [ad["id"] for ad in ads] == ["a", "b", "c"]


def test_sorts_normalized_models():
    ads = [
        normalize_ad({"id": "cold", "collation_count": 1, "days_running": 0}),
        normalize_ad({"id": "hot", "collation_count": 10, "days_running": 40}),
    ]
    assert [ad.id for ad in sort_by_hotness(ads)] == ["hot", "cold"]


def test_summarize_sources_counts_apify_media():
    ads = [
        {"source": "facebook_api"},
        {"source": "apify_scraping", "apify_data": {"images": ["a.jpg"], "videos": []}},
        {"source": "apify_scraping", "apify_data": {"images": [], "videos": [{"id": 1}]}},
        {"source": "apify_scraping", "apify_data": {}},
    ]
    summary = summarize_sources(ads)
    assert summary["facebook_api"] == 1
    assert summary["apify_scraping"] == 3
    assert summary["apify_with_images"] == 1
    assert summary["apify_with_videos"] == 1
    assert summary["apify_text_only"] == 1
