from capture_bot.urls import extract_urls


def test_no_urls():
    assert extract_urls("nothing to see here") == []
    assert extract_urls("") == []


def test_urls_in_order_of_appearance():
    text = "see https://b.example/x then http://a.example and https://b.example/x again"
    assert extract_urls(text) == [
        "https://b.example/x",
        "http://a.example",
        "https://b.example/x",
    ]


def test_url_runs_until_whitespace():
    assert extract_urls("link:https://example.com/a?b=1,(c)\nnext") == ["https://example.com/a?b=1,(c)"]


def test_non_http_schemes_ignored():
    assert extract_urls("ftp://files.example mailto:me@example.com www.example.com") == []
