from urllib.parse import parse_qs, urlparse

import requests
import responses

import yuyutei
from config import YUYUTEI_SEARCH_URL
from database import CardDatabase
from image_hash import bytes_to_image_hash
from models import Card, CardIllustration, Localized
from yuyutei import YuyuteiListing, assign_by_images, assign_quick, parse_listings

SEARCH_PAGE = """
<html><body>
<div id="card-list3">
  <h3><span>OSR</span></h3>
  <div class="card-product">
    <a href="https://yuyu-tei.jp/sell/hocg/card/hsd01/10001">
      <img src="https://img.yuyu-tei.jp/10001.jpg">
    </a>
    <span>hSD01-001</span>
    <h4>ときのそら</h4>
  </div>
  <div class="card-product">
    <a href="https://yuyu-tei.jp/sell/hocg/card/hsd01/10002">
      <img src="https://img.yuyu-tei.jp/10002.jpg">
    </a>
    <span>hSD01-002</span>
    <h4>AZKi(エラッタ前)</h4>
  </div>
</div>
<div id="card-list3">
  <h3><span>C</span></h3>
  <div class="card-product">
    <a href="https://yuyu-tei.jp/sell/hocg/card/hsd01/10003">
      <img src="https://img.yuyu-tei.jp/10003.jpg">
    </a>
    <span>hSD01-003</span>
    <h4>ときのそら</h4>
  </div>
</div>
<ul class="pagination">
  <li><a>1</a></li><li><a>2</a></li><li><a>7</a></li><li><a>&raquo;</a></li>
</ul>
</body></html>
"""


def listing(url, number="hBP01-001", rarity="RR", img_url=""):
    return YuyuteiListing(url=url, card_number=number, rarity=rarity, img_url=img_url)


def test_parse_listings():
    listings, max_page = parse_listings(SEARCH_PAGE)

    assert [(l.card_number, l.rarity) for l in listings] == [("hSD01-001", "OSR"), ("hSD01-003", "C")]
    assert listings[0].url == "https://yuyu-tei.jp/sell/hocg/card/hsd01/10001"
    assert listings[0].img_url == "https://img.yuyu-tei.jp/10001.jpg"
    assert listings[0].name == "ときのそら"
    assert max_page == 7


def test_parse_listings_without_pagination():
    assert parse_listings("<html></html>") == ([], 0)


def test_assign_quick():
    card = Card(card_number="hBP01-001")
    card.illustrations = [
        CardIllustration(rarity="RR", img_path=Localized(jp="a.webp"), yuyutei_sell_url="u0"),
        CardIllustration(rarity="RR", img_path=Localized(jp="a.webp")),
        CardIllustration(rarity="RR", img_path=Localized(jp="b.webp")),
        CardIllustration(rarity="SEC", img_path=Localized(jp="c.webp")),
    ]
    db = CardDatabase([card])

    assigned, skipped, leftovers = assign_quick(db, [
        listing("u0"), listing("u1"), listing("u2"), listing("u3", number="hBP01-002"),
    ])

    assert [i.yuyutei_sell_url for i in card.illustrations] == ["u0", "u0", "u1", None]
    assert (assigned, skipped) == (1, 1)
    assert leftovers == [(("hBP01-001", "RR"), "u2"), (("hBP01-002", "RR"), "u3")]


def test_assign_by_images(make_png):
    card = Card(card_number="hBP01-001")
    card.illustrations = [
        CardIllustration(rarity="RR", img_hash=bytes_to_image_hash(make_png(1)), yuyutei_sell_url="old"),
        CardIllustration(rarity="RR", img_hash=bytes_to_image_hash(make_png(2))),
        CardIllustration(rarity="SEC", img_hash=bytes_to_image_hash(make_png(3))),
    ]
    db = CardDatabase([card])
    pictures = {"img-a": make_png(2), "img-b": make_png(1), "img-c": make_png(9)}
    listings = [
        listing("url-a", img_url="img-a"),
        listing("url-b", img_url="img-b"),
        listing("url-sec", rarity="SEC", img_url="img-c"),
    ]

    assigned, leftovers = assign_by_images(db, listings, lambda l: pictures[l.img_url])

    assert [i.yuyutei_sell_url for i in card.illustrations] == ["url-b", "url-a", "url-sec"]
    assert assigned == 3
    assert leftovers == []


def test_assign_by_images_skips_broken_pictures(make_png):
    card = Card(card_number="hBP01-001")
    card.illustrations = [
        CardIllustration(rarity="RR", img_hash=bytes_to_image_hash(make_png(1))),
        CardIllustration(rarity="RR", img_hash=bytes_to_image_hash(make_png(2))),
    ]
    db = CardDatabase([card])
    pictures = {"img-a": b"broken", "img-b": make_png(1)}
    listings = [listing("url-a", img_url="img-a"), listing("url-b", img_url="img-b")]

    assigned, leftovers = assign_by_images(db, listings, lambda l: pictures[l.img_url])

    assert [i.yuyutei_sell_url for i in card.illustrations] == ["url-b", None]
    assert assigned == 1
    assert leftovers == [(("hBP01-001", "RR"), "url-a")]


@responses.activate
def test_scraper_proxy_wraps_the_search_url(monkeypatch):
    monkeypatch.setattr(yuyutei, "SCRAPERAPI_API_KEY", "key")
    responses.add(responses.GET, yuyutei.SCRAPERAPI_URL, body=SEARCH_PAGE)

    html = yuyutei.fetch_page(requests.Session(), 2)

    assert "hSD01-001" in html
    query = parse_qs(urlparse(responses.calls[0].request.url).query)
    assert query["api_key"] == ["key"]
    assert query["url"] == [f"{YUYUTEI_SEARCH_URL}?search_word=&page=2"]
