# ------------ Config ------------
SUBSCRIBER_QUEUE_SIZE = 16    # bounded per-subscriber queue of pending documents
HEARTBEAT_INTERVAL = 15       # seconds between keep-alive pulses on push channels
SEND_TIMEOUT = 5              # seconds a single push to one subscriber may take
DEFAULT_PORT = 3333
# --------------------------------

# Fallback document used by normalization; mirrors storage/default-settings.json
DEFAULT_SETTINGS = {
    "goalAmount": 0,
    "raisedAmount": 0,
    "currency": "EUR",
    "locale": "nl-NL",
    "donationUrl": "https://voorbeeld.nl/doneren",
    "bullets": [
        "Elke bijdrage helpt",
        "Doneer eenvoudig via de QR-code",
        "Hartelijk dank voor uw steun",
    ],
    "slides": [
        {"src": "", "title": "Welkom", "sub": "Samen bouwen we verder"},
        {"src": "", "title": "Doneer vandaag", "sub": "Scan de QR-code om bij te dragen"},
    ],
    "slideSeconds": 8,
}
