import sys
from pathlib import Path

import pytest

# Ensure `provider_directory` is importable when running pytest from a checkout.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def business():
    """A Yelp business payload with every field the normalizer reads."""
    return {
        "id": "yelp-abc",
        "name": "Bay Flow Plumbing",
        "phone": "+14155550100",
        "url": "https://www.yelp.com/biz/bay-flow-plumbing",
        "image_url": "https://s3-media.yelp.com/bay-flow.jpg",
        "review_count": 128,
        "rating": 4.5,
        "price": "$$",
        "distance": 1532.7,
        "location": {
            "address1": "123 Valencia St",
            "city": "San Francisco",
            "state": "CA",
            "zip_code": "94103",
            "display_address": ["123 Valencia St", "Mission District, San Francisco, CA 94103"],
        },
        "coordinates": {"latitude": 37.76, "longitude": -122.42},
        "categories": [
            {"alias": "plumbing", "title": "Plumbing"},
            {"alias": "waterheaterinstallrepair", "title": "Water Heater Installation/Repair"},
        ],
        "hours": [
            {
                "open": [
                    {"is_overnight": False, "start": "0800", "end": "1800", "day": 0},
                    {"is_overnight": False, "start": "0800", "end": "1800", "day": 1},
                ],
                "hours_type": "REGULAR",
                "is_open_now": True,
            }
        ],
    }
