from datetime import datetime

from storebot.services.normalizer import (
    extract_keywords,
    make_excerpt,
    normalize,
    strip_html,
)


def test_strip_html_removes_tags_and_entities():
    assert strip_html("<p>Rich&nbsp;<b>dark</b>\n\n chocolate</p>") == "Rich dark chocolate"
    assert strip_html(None) == ""


def test_extract_keywords_skips_short_words_and_stopwords():
    keywords = extract_keywords("Diet Chocolate Bar", "This bar is made with cocoa, and cocoa only.")
    words = keywords.split(", ")
    assert words[:2] == ["diet", "chocolate"]
    assert "cocoa" in words
    assert words.count("cocoa") == 1
    assert "this" not in words
    assert "bar" not in words


def test_extract_keywords_caps_at_twenty():
    body = " ".join(f"keyword{i}" for i in range(40))
    assert len(extract_keywords("", body).split(", ")) == 20


def test_make_excerpt_only_truncates_long_text():
    assert make_excerpt("short") == "short"
    long_text = "x" * 250
    excerpt = make_excerpt(long_text)
    assert excerpt == "x" * 200 + "..."


def test_normalize_item():
    raw = {
        "id": "gid://shopify/Product/1",
        "title": "  Diet Chocolate Bar ",
        "handle": "diet-chocolate-bar",
        "descriptionHtml": "<p>Sugar free <em>dark</em> chocolate.</p>",
        "tags": ["Keto", " ", "Snacks"],
        "vendor": "Cocoa Co",
        "productType": "Chocolate",
        "status": "ACTIVE",
        "createdAt": "2024-05-01T10:00:00Z",
        "facets": ["100g", None, "Healthy Snacks"],
    }
    record = normalize(7, "item", raw)

    assert record["tenant_id"] == 7
    assert record["external_id"] == "gid://shopify/Product/1"
    assert record["title"] == "Diet Chocolate Bar"
    assert record["body"] == "Sugar free dark chocolate."
    assert record["url"] == "/products/diet-chocolate-bar"
    assert record["tags"] == "Keto, Snacks"
    assert "cocoa co" in record["search_blob"]
    assert "healthy snacks" in record["search_blob"]
    assert record["search_blob"] == record["search_blob"].lower()
    assert record["published_at"] == datetime(2024, 5, 1, 10, 0, 0)
    assert record["is_active"] is True


def test_normalize_tolerates_missing_optional_fields():
    record = normalize(1, "collection", {"id": "c1", "title": "Summer"})
    assert record["body"] == ""
    assert record["excerpt"] == ""
    assert record["tags"] == ""
    assert record["url"] is None
    assert record["published_at"] is None
    assert record["is_active"] is True


def test_normalize_article_url_and_publication():
    raw = {
        "id": "a1",
        "title": "How we roast",
        "handle": "how-we-roast",
        "contentHtml": "<p>Slow and low.</p>",
        "excerpt": "<p>A short story</p>",
        "blogHandle": "journal",
        "isPublished": False,
    }
    record = normalize(1, "article", raw)
    assert record["url"] == "/blogs/journal/how-we-roast"
    assert record["excerpt"] == "A short story"
    assert record["is_active"] is False


def test_normalize_draft_item_is_inactive():
    record = normalize(1, "item", {"id": "p2", "title": "Draft", "status": "DRAFT"})
    assert record["is_active"] is False
