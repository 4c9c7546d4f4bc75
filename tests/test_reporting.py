import csv
from photo_mapper.reporting import ReportGenerator, PHOTO_HEADERS

def test_photos_csv(tmp_path):
    photos = [
        {"id": "c1/a.jpg", "name": "a.jpg", "latitude": 48.85, "longitude": 2.35, "altitude": None},
        {"id": "c1/b.jpg", "name": "b.jpg", "latitude": -33.86, "longitude": 151.21, "altitude": 12.0},
    ]
    output_csv = tmp_path / "out" / "photos.csv"

    count = ReportGenerator().write_photos_csv(photos, output_csv)

    with open(output_csv, "r", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        rows = list(reader)

    assert count == 2
    assert reader.fieldnames == PHOTO_HEADERS
    assert rows[0]["id"] == "c1/a.jpg"
    assert rows[0]["altitude"] == ""
    assert rows[1]["latitude"] == "-33.86"
    # Columns absent from the input are left blank
    assert rows[1]["viewUrl"] == ""

def test_history_csv(tmp_path):
    entries = [{
        "timestamp": "2024-01-01T00:00:00+00:00", "collectionId": "c1", "action": "full-sync",
        "status": "completed", "recordsSeen": 3, "recordsWithLocation": 2,
        "errorCount": 0, "durationMs": 41,
    }]
    output_csv = tmp_path / "history.csv"

    ReportGenerator().write_history_csv(entries, output_csv)

    with open(output_csv, "r", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert rows == [{
        "timestamp": "2024-01-01T00:00:00+00:00", "collectionId": "c1", "action": "full-sync",
        "status": "completed", "recordsSeen": "3", "recordsWithLocation": "2",
        "errorCount": "0", "durationMs": "41",
    }]
