from src.projectbot.services.html_to_slack import decode_entities, html_to_slack


def test_headings_paragraphs_and_emphasis():
    html = "<h2>Key Progress</h2><p>Framing is <strong>done</strong> and <em>inspected</em>.</p>"
    assert html_to_slack(html) == "*Key Progress*\nFraming is *done* and _inspected_."


def test_lists_become_bullets():
    html = "<h3>Next Steps</h3><ul><li>Order windows</li><li>Book electrician</li></ul>"
    assert html_to_slack(html) == "*Next Steps*\n\n• Order windows\n• Book electrician"


def test_links_keep_slack_markup():
    html = '<p>See the <a href="https://example.com/plan">site plan</a></p>'
    assert html_to_slack(html) == "See the <https://example.com/plan|site plan>"


def test_document_wrapper_and_styles_are_dropped():
    html = "<html><head><title>x</title></head><body><style>p{}</style><p>Body only</p></body></html>"
    assert html_to_slack(html) == "Body only"


def test_entities_are_decoded_once():
    assert html_to_slack("<p>Tom &amp; Jerry &lt;3</p>") == "Tom & Jerry <3"
    assert decode_entities("&amp;lt;") == "&lt;"


def test_plain_text_passes_through():
    assert html_to_slack("No markup here &amp; there") == "No markup here & there"
    assert html_to_slack("") == ""


def test_blank_runs_collapse():
    assert html_to_slack("<p>One</p><p></p><p></p><p>Two</p>") == "One\n\nTwo"
