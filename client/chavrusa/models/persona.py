"""
Persona Models - Selectable assistant identities (rabbis).
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Persona(BaseModel):
    """An assistant persona as served by ``GET /chat/rabbis``."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    display_name: str = Field(alias="displayName")
    era: Optional[str] = None
    description: Optional[str] = None
    specialties: List[str] = Field(default_factory=list)
    image: Optional[str] = None


# Used when the backend is unavailable
FALLBACK_PERSONAS: List[Persona] = [
    Persona(
        id="rashi",
        name="Rashi",
        display_name="Rashi",
        era="11th century France",
        description="Master commentator focused on peshat (plain meaning).",
        specialties=["Torah Commentary", "Talmud", "Peshat"],
    ),
    Persona(
        id="rambam",
        name="Rambam",
        display_name="Rambam (Maimonides)",
        era="12th century Spain/Egypt",
        description="Systematic halakhist and rational philosopher.",
        specialties=["Mishneh Torah", "Jewish Philosophy", "Halakhah"],
    ),
    Persona(
        id="rabbi-yosef-caro",
        name="Rabbi Yosef Caro",
        display_name="Rabbi Yosef Caro (Maran)",
        era="16th century Israel",
        description="Author of Shulchan Aruch, practical halakhic guidance.",
        specialties=["Shulchan Aruch", "Beit Yosef", "Halakhah"],
    ),
    Persona(
        id="baal-shem-tov",
        name="Baal Shem Tov",
        display_name="The Baal Shem Tov",
        era="18th century Ukraine/Poland",
        description="Founder of Hasidism, joy and divine immanence.",
        specialties=["Chassidut", "Spirituality", "Ahavat Yisrael"],
    ),
]

OFFLINE_PERSONA_NAMES: Dict[str, str] = {p.id: p.name for p in FALLBACK_PERSONAS}
OFFLINE_DEFAULT_NAME = "Your Chavrusa"
OFFLINE_ECHO_LIMIT = 140


def simulated_reply(persona_id: Optional[str], text: str) -> str:
    """Clearly labeled stand-in answer used when the backend cannot answer."""
    name = OFFLINE_PERSONA_NAMES.get(persona_id or "", OFFLINE_DEFAULT_NAME)
    return (
        f'{name}: (offline) I received your question: "{text[:OFFLINE_ECHO_LIMIT]}". '
        "Please start the backend to get full AI answers."
    )
