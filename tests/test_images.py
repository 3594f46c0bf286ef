import unittest

from dealersync.extraction.images import (
    ImageResolver,
    is_valid_image,
    normalize_gallery,
    numeric_suffix_variants,
    upgrade_thumbnail,
)
from dealersync.pages import PageData

CDN = "https://image123.azureedge.net/1452782bcltd"
PLACEHOLDER = f"{CDN}/16487202666893896-12.png"


class FakeProber:
    """Answers 200 for a fixed set of URLs and records every probe."""

    def __init__(self, existing: set[str]) -> None:
        self.existing = existing
        self.calls: list[str] = []

    def probe(self, url: str) -> int | None:
        self.calls.append(url)
        return 200 if url in self.existing else 404


def _page(body: str) -> PageData:
    return PageData(url="https://www.brownboysauto.com/cars/used/x-1", html=f"<html><body>{body}</body></html>")


class NormalizeGalleryTestCase(unittest.TestCase):
    def test_caps_at_limit_without_duplicates(self) -> None:
        urls = [f"{CDN}/car-{index % 30}.jpg" for index in range(60)]

        gallery = normalize_gallery(urls)

        self.assertEqual(len(gallery), 24)
        self.assertEqual(len(set(gallery)), 24)
        self.assertEqual(gallery[0], f"{CDN}/car-0.jpg")

    def test_drops_placeholders_and_chrome_assets(self) -> None:
        urls = [
            f"{CDN}/car-1.jpg",
            PLACEHOLDER,
            f"{CDN}/dealer-logo.png",
            f"{CDN}/badge.svg",
            "/relative/car.jpg",
            f"{CDN}/car-1.jpg",
        ]

        self.assertEqual(normalize_gallery(urls, placeholders=[PLACEHOLDER]), [f"{CDN}/car-1.jpg"])

    def test_is_valid_image(self) -> None:
        self.assertTrue(is_valid_image(f"{CDN}/car-1.jpg"))
        self.assertFalse(is_valid_image(f"{CDN}/icons/phone-icon.png"))
        self.assertFalse(is_valid_image(PLACEHOLDER, [PLACEHOLDER]))


class UrlHelpersTestCase(unittest.TestCase):
    def test_upgrade_thumbnail(self) -> None:
        self.assertEqual(
            upgrade_thumbnail(f"{CDN}/thumb-2021-LandRover-RangeRover-3.jpg"),
            f"{CDN}/2021-LandRover-RangeRover-3.jpg",
        )

    def test_numeric_suffix_variants_cover_every_format(self) -> None:
        self.assertEqual(
            numeric_suffix_variants(f"{CDN}/2021-Civic-4.jpg", 2),
            [
                f"{CDN}/2021-Civic-2.jpg",
                f"{CDN}/2021-Civic-02.jpg",
                f"{CDN}/2021-Civic_2.jpg",
                f"{CDN}/2021-Civic_02.jpg",
            ],
        )

    def test_numeric_suffix_variants_keep_positions_past_nine(self) -> None:
        variants = numeric_suffix_variants(f"{CDN}/civic_01.jpg", 12)
        self.assertEqual(len(variants), 4)
        self.assertEqual(variants[3], f"{CDN}/civic_12.jpg")


class ImageResolverTestCase(unittest.TestCase):
    def test_gallery_strategy_wins_when_populated(self) -> None:
        page = _page(
            f"""
            <div class="image-gallery-slide"><img class="image-gallery-image" src="{CDN}/a-1.jpg"></div>
            <div class="image-gallery-slide"><img class="image-gallery-image" data-src="{CDN}/a-2.jpg" src="data:,"></div>
            <img src="{CDN}/unrelated-9.jpg">
            """
        )
        prober = FakeProber(set())

        gallery = ImageResolver(prober=prober).resolve_gallery(page)

        self.assertEqual(gallery, [f"{CDN}/a-1.jpg", f"{CDN}/a-2.jpg"])
        self.assertEqual(prober.calls, [])

    def test_page_images_skip_site_chrome(self) -> None:
        page = _page(
            f"""
            <header><img src="{CDN}/header-banner.jpg"></header>
            <a href="/"><img src="{CDN}/home.jpg"></a>
            <div class="brand-logo"><img src="{CDN}/brand.jpg"></div>
            <div class="content">
              <img src="{CDN}/car-1.jpg">
              <img src="{CDN}/car-2.jpg">
              <img src="https://ads.example.com/banner.jpg">
            </div>
            <footer><img src="{CDN}/footer.jpg"></footer>
            """
        )

        self.assertEqual(ImageResolver().from_page_images(page), [f"{CDN}/car-1.jpg", f"{CDN}/car-2.jpg"])

    def test_thumbnails_are_upgraded(self) -> None:
        page = _page(
            f"""
            <img class="image-gallery-thumbnail-image" src="{CDN}/thumb-car-1.jpg">
            <img class="image-gallery-thumbnail-image" src="{CDN}/thumb-car-2.jpg">
            """
        )

        self.assertEqual(ImageResolver().from_thumbnails(page), [f"{CDN}/car-1.jpg", f"{CDN}/car-2.jpg"])

    def test_numeric_suffix_locks_format_and_stops_at_first_miss(self) -> None:
        existing = {f"{CDN}/civic_0{index}.jpg" for index in range(1, 4)}
        prober = FakeProber(existing)

        found = ImageResolver(prober=prober).from_numeric_suffix(f"{CDN}/thumb-civic_01.jpg")

        self.assertEqual(found, sorted(existing))
        # Sequence 1 walks the formats; later sequences probe only the matched one.
        self.assertEqual(
            prober.calls,
            [
                f"{CDN}/civic-1.jpg",
                f"{CDN}/civic-01.jpg",
                f"{CDN}/civic_1.jpg",
                f"{CDN}/civic_01.jpg",
                f"{CDN}/civic_02.jpg",
                f"{CDN}/civic_03.jpg",
                f"{CDN}/civic_04.jpg",
            ],
        )

    def test_numeric_suffix_respects_probe_cap(self) -> None:
        existing = {f"{CDN}/car-{index}.jpg" for index in range(1, 40)}
        prober = FakeProber(existing)

        found = ImageResolver(prober=prober, max_probes=5).from_numeric_suffix(f"{CDN}/car-1.jpg")

        self.assertEqual(len(prober.calls), 5)
        self.assertEqual(len(found), 5)

    def test_numeric_suffix_only_counts_ok_responses(self) -> None:
        class RedirectProber:
            def probe(self, url: str) -> int | None:
                return 302

        self.assertEqual(ImageResolver(prober=RedirectProber()).from_numeric_suffix(f"{CDN}/car-1.jpg"), [])

    def test_resolve_falls_back_to_probing_from_single_image(self) -> None:
        page = _page(f'<div class="image-gallery-slide"><img class="image-gallery-image" src="{CDN}/van-1.jpg"></div>')
        prober = FakeProber({f"{CDN}/van-1.jpg", f"{CDN}/van-2.jpg", f"{CDN}/van-3.jpg"})

        gallery = ImageResolver(prober=prober).resolve_gallery(page)

        self.assertEqual(gallery, [f"{CDN}/van-1.jpg", f"{CDN}/van-2.jpg", f"{CDN}/van-3.jpg"])

    def test_resolve_returns_empty_when_nothing_found(self) -> None:
        self.assertEqual(ImageResolver(prober=FakeProber(set())).resolve_gallery(_page("<p>No photos</p>")), [])


if __name__ == "__main__":
    unittest.main()
