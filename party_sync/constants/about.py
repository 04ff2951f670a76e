"""Static metadata describing PartySync."""

APP_NAME = "PartySync"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "PartySync keeps a party-game client in step with the game server over plain "
    "REST polling: round phases, skew-corrected countdowns, exactly-once answers "
    "and final results, with a labelled fallback when the server never settles."
)
USER_AGENT = f"{APP_NAME}/{APP_VERSION}"
