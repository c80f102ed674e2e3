from quietcapture.workflows.titles import extract_best_title, infer_title_from_url, normalize_title


def test_normalize_title_drops_site_suffix_and_boilerplate():
    assert normalize_title("Tata Nexon EV Price - Images | CarDekho", "www.cardekho.com") == "Tata Nexon Ev"


def test_normalize_title_strips_site_token_as_whole_word():
    assert normalize_title("cardekho tata punch", "cardekho.com") == "Tata Punch"
    # Only whole words: "cardekhoplus" survives.
    assert normalize_title("cardekhoplus tata punch", "cardekho.com") == "Cardekhoplus Tata Punch"


def test_normalize_title_dedupes_tokens_in_order():
    assert normalize_title("Review Review Honda City City", "") == "Honda City"


def test_normalize_title_length_guard():
    assert normalize_title("ab", "") is None
    assert normalize_title("Price | Whatever", "") is None
    assert normalize_title("", "example.com") is None
    assert normalize_title(None, "example.com") is None


def test_normalize_title_is_stable_on_its_own_output():
    once = normalize_title("The Quiet: Guide / To Capture", "example.com")
    assert once == "The Quiet Guide To Capture"
    assert normalize_title(once, "example.com") == once


def test_normalize_title_tolerates_regex_hostile_domain():
    assert normalize_title("Plain Title", "c++(.com") == "Plain Title"


def test_normalize_title_repairs_mojibake():
    assert normalize_title("CafÃ© Racer Build", "") == "Café Racer Build"


def test_infer_title_from_url_uses_last_two_segments():
    assert infer_title_from_url("https://www.cardekho.com/tata/nexon-ev") == "Tata Nexon Ev"
    assert infer_title_from_url("https://example.com/a/b/honda/city_hybrid") == "Honda City Hybrid"


def test_infer_title_from_url_skips_noise_segments():
    assert infer_title_from_url("https://example.com/blog/my_first-post") == "My First Post"
    assert infer_title_from_url("https://example.com/News/Tags") is None


def test_infer_title_from_url_without_path_or_host():
    assert infer_title_from_url("https://example.com/") is None
    assert infer_title_from_url("not a url") is None


def test_extract_best_title_prefers_longest_meaningful_segment():
    raw = "Home - The Pragmatic Programmer | GitHub"
    assert extract_best_title(raw, "https://github.com/x") == "The Pragmatic Programmer"


def test_extract_best_title_removes_site_token():
    assert extract_best_title("Shopify Store Setup Guide", "https://www.shopify.com/guide") == "Store Setup Guide"


def test_extract_best_title_empty():
    assert extract_best_title("", "https://example.com") is None
    assert extract_best_title(None, "https://example.com") is None


def test_normalize_title_cardekho_listing():
    title = normalize_title("Honda City | Price, Images, Specs - CarDekho", "cardekho.com")
    assert title == "Honda City"
    for word in ("price", "images", "specs", "cardekho"):
        assert word not in title.lower()


def test_infer_title_from_url_last_two_segments_of_deep_path():
    assert infer_title_from_url("https://example.com/cars/honda/city") == "Honda City"
