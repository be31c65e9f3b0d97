# wabot/scoring/leagues.py
"""League tables used to seed teams: name -> (strength, starting form)."""

from typing import Dict, Tuple

LEAGUES: Dict[str, Dict] = {
    "EPL": {
        "name": "English Premier League",
        "fixtures_per_batch": 6,
        "teams": {
            "Arsenal": (92, 90),
            "Aston Villa": (80, 78),
            "Bournemouth": (68, 65),
            "Brentford": (70, 72),
            "Brighton": (75, 78),
            "Chelsea": (84, 80),
            "Crystal Palace": (72, 70),
            "Everton": (69, 66),
            "Fulham": (71, 73),
            "Ipswich Town": (62, 60),
            "Leicester City": (73, 75),
            "Liverpool": (91, 88),
            "Manchester City": (96, 95),
            "Manchester United": (85, 82),
            "Newcastle United": (82, 80),
            "Nottingham Forest": (67, 68),
            "Southampton": (64, 62),
            "Tottenham": (83, 81),
            "West Ham": (78, 75),
            "Wolves": (74, 72),
        },
    },
    "LALIGA": {
        "name": "Spanish La Liga",
        "fixtures_per_batch": 4,
        "teams": {
            "Real Madrid": (97, 95),
            "Barcelona": (90, 88),
            "Girona": (80, 82),
            "Atletico Madrid": (88, 85),
            "Athletic Bilbao": (82, 80),
            "Real Sociedad": (81, 83),
            "Real Betis": (79, 77),
            "Villarreal": (78, 76),
            "Valencia": (77, 75),
            "Sevilla": (80, 78),
        },
    },
    "BUNDESLIGA": {
        "name": "German Bundesliga",
        "fixtures_per_batch": 4,
        "teams": {
            "Bayern Munich": (94, 92),
            "Bayer Leverkusen": (91, 93),
            "Borussia Dortmund": (88, 86),
            "RB Leipzig": (87, 88),
            "VfB Stuttgart": (84, 85),
        },
    },
    "SERIEA": {
        "name": "Italian Serie A",
        "fixtures_per_batch": 4,
        "teams": {
            "Inter Milan": (92, 90),
            "AC Milan": (87, 85),
            "Juventus": (86, 84),
            "Atalanta": (83, 81),
            "Napoli": (84, 82),
        },
    },
}

# User-facing league filters for the fixtures command
LEAGUE_ALIASES: Dict[str, str] = {
    "epl": "EPL",
    "premier": "EPL",
    "premierleague": "EPL",
    "laliga": "LALIGA",
    "liga": "LALIGA",
    "spain": "LALIGA",
    "bundesliga": "BUNDESLIGA",
    "bundes": "BUNDESLIGA",
    "germany": "BUNDESLIGA",
    "seriea": "SERIEA",
    "serie": "SERIEA",
    "italy": "SERIEA",
}


def league_code(text: str) -> str:
    key = (text or "").lower().replace(" ", "").replace("_", "")
    if key.upper() in LEAGUES:
        return key.upper()
    return LEAGUE_ALIASES.get(key, "")


def team_entry(league: str, team: str) -> Tuple[int, int]:
    return LEAGUES[league]["teams"][team]
