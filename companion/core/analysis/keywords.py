"""
Heuristic rule tables.

Keyword lists, branch rules and reply templates used by the heuristic
classifier. Keywords are matched on whole words against lower-cased text.
Rule order is the branch precedence: the first matching rule wins.
"""

from dataclasses import dataclass
from typing import Optional

from .types import Category


@dataclass(frozen=True)
class CategoryRule:
    """One severity branch of the heuristic classifier."""

    category: Category
    # Every group must have at least one keyword hit for the rule to match
    keyword_groups: tuple[tuple[str, ...], ...]
    level: int
    triggers: tuple[str, ...]
    coping: dict[str, tuple[str, ...]]    # language -> strategies
    response: dict[str, str]              # language -> personalized response
    # When True, level is a floor over the keyword-derived level
    level_is_floor: bool = False


# ==================================
# Keyword Lists
# ==================================

ANXIETY_KEYWORDS: tuple[str, ...] = (
    "anxious", "worry", "worried", "stress", "stressed", "panic", "fear",
    "scared", "overwhelmed", "nervous", "tense", "restless", "uneasy",
    "troubled", "disturbed",
    # Spanish
    "ansiedad", "ansioso", "ansiosa", "preocupado", "preocupada", "estresado",
    "estresada", "miedo", "nervioso", "nerviosa",
)

OVERWHELM_KEYWORDS: tuple[str, ...] = ("overwhelm", "overwhelmed", "overwhelming", "agobiado", "agobiada")

HALLUCINATION_KEYWORDS: tuple[str, ...] = (
    "seeing things", "hearing voices", "hear voices", "voices in my head",
    "hearing things", "watching me", "following me", "spies", "cia", "fbi",
    "conspiracy", "dogs talking", "dogs are talking", "animals talking",
    "cats talking", "things moving", "not real", "aren't real",
    "hallucinating", "hallucination", "hallucinations", "paranoid",
    "delusion", "delusions",
    "escucho voces", "veo cosas",
)

PANIC_KEYWORDS: tuple[str, ...] = (
    "panic", "panic attack", "panicking", "heart racing", "heart is racing",
    "can't breathe", "cant breathe", "chest pain", "dying", "losing control",
    "pánico", "no puedo respirar",
)

TRAUMA_KEYWORDS: tuple[str, ...] = (
    "trauma", "traumatic", "traumatized", "flashback", "flashbacks",
    "nightmare", "nightmares", "trigger", "triggered", "ptsd", "veteran",
    "assault", "assaulted", "accident",
    "pesadilla", "pesadillas",
)

OCD_KEYWORDS: tuple[str, ...] = (
    "ocd", "obsessive", "compulsive", "compulsion", "compulsions",
    "contamination", "checking", "counting", "intrusive", "intrusive thoughts",
    "ritual", "rituals",
    "toc",
)

VIOLENT_KEYWORDS: tuple[str, ...] = ("hurt", "hurting", "kill", "killing", "die", "morir", "matar")

RELATIONSHIP_LOSS_KEYWORDS: tuple[str, ...] = (
    "wife", "husband", "partner", "boyfriend", "girlfriend", "cheat",
    "cheated", "cheating", "esposa", "esposo", "pareja", "engañó",
)

DEPRESSION_KEYWORDS: tuple[str, ...] = ("depressed", "sad", "hopeless", "deprimido", "deprimida", "triste")

GENERALIZED_WORRY_KEYWORDS: tuple[str, ...] = (
    "generalized anxiety", "gad", "worry about everything",
    "worried about everything", "me preocupa todo",
)

SADNESS_KEYWORDS: tuple[str, ...] = (
    "sad", "sadness", "depression", "depressed", "hopeless",
    "triste", "tristeza", "depresión", "deprimido", "deprimida",
)

GENERAL_ANXIETY_KEYWORDS: tuple[str, ...] = (
    "anxious", "anxiety", "worried",
    "ansiedad", "ansioso", "ansiosa", "preocupado", "preocupada",
)

SLEEP_KEYWORDS: tuple[str, ...] = (
    "can't sleep", "cant sleep", "unable to sleep", "insomnia",
    "no puedo dormir", "insomnio",
)


# Trigger categories, scanned independently of the severity branch
TRIGGER_CATEGORIES: dict[str, tuple[str, ...]] = {
    "driving": (
        "driving", "drive", "car", "vehicle", "intersection", "traffic", "road",
        "highway", "freeway", "lane", "parking", "crash", "accident", "collision",
    ),
    "work": (
        "work", "job", "office", "boss", "colleague", "career", "workplace",
        "employment", "meeting", "deadline",
    ),
    "social": (
        "social", "people", "friends", "party", "gathering", "conversation",
        "public", "crowd", "speaking", "presentation",
    ),
    "health": (
        "health", "sick", "pain", "doctor", "hospital", "illness", "disease",
        "symptom", "medical", "therapy",
    ),
    "financial": (
        "money", "financial", "debt", "bills", "budget", "income", "expenses",
        "payment", "loan", "mortgage",
    ),
    "relationships": (
        "relationship", "partner", "spouse", "divorce", "breakup", "dating",
        "marriage", "family", "conflict",
    ),
    "performance": (
        "test", "exam", "performance", "evaluation", "assessment", "interview",
        "competition", "failure", "success",
    ),
    "future_uncertainty": (
        "future", "unknown", "uncertain", "change", "decision", "choice", "plan",
        "tomorrow", "later",
    ),
}


# Cognitive distortion label -> keywords
COGNITIVE_DISTORTIONS: dict[str, tuple[str, ...]] = {
    "All-or-nothing thinking": ("always", "never", "everything"),
    "Should statements": ("should", "must", "have to"),
    "Catastrophizing": ("worst", "terrible", "awful"),
}


# ==================================
# Branch Rules (precedence order)
# ==================================

CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        category=Category.HALLUCINATION,
        keyword_groups=(HALLUCINATION_KEYWORDS,),
        level=10,
        triggers=("Paranoia", "Fear", "Crisis"),
        coping={
            "en": (
                "Name 5 things you see RIGHT NOW",
                "Splash cold water on face or hold ice",
                "Call 988 or go to ER immediately",
                "Stay with someone trusted",
            ),
            "es": (
                "Nombra 5 cosas que ves AHORA MISMO",
                "Échate agua fría en la cara o sostén hielo",
                "Llama al 988 o ve a urgencias de inmediato",
                "Quédate con alguien de confianza",
            ),
        },
        response={
            "en": (
                "Right now: Look around and name 5 things you can see. Touch something cold - "
                "ice or cold water on your face. Breathe slowly: in for 4, out for 6. "
                "If this continues, call 988 immediately."
            ),
            "es": (
                "Ahora mismo: mira a tu alrededor y nombra 5 cosas que puedas ver. Toca algo frío, "
                "hielo o agua fría en la cara. Respira despacio: inhala en 4, exhala en 6. "
                "Si esto continúa, llama al 988 de inmediato."
            ),
        },
    ),
    CategoryRule(
        category=Category.PANIC,
        keyword_groups=(PANIC_KEYWORDS,),
        level=8,
        triggers=("Panic attack", "Acute anxiety"),
        coping={
            "en": (
                "Square breathing: 4-4-4-4 pattern",
                "Ice cube on wrist or neck",
                "Count backwards from 100 by 7s",
                "This WILL pass in 10-20 minutes",
            ),
            "es": (
                "Respiración cuadrada: patrón 4-4-4-4",
                "Hielo en la muñeca o el cuello",
                "Cuenta hacia atrás desde 100 de 7 en 7",
                "Esto PASARÁ en 10-20 minutos",
            ),
        },
        response={
            "en": (
                "This is panic, not danger. Breathe: in for 4, hold for 4, out for 6. Five times. "
                "Place hand on chest - you're okay. This will pass in 10-20 minutes."
            ),
            "es": (
                "Esto es pánico, no peligro. Respira: inhala en 4, sostén 4, exhala en 6. Cinco veces. "
                "Pon la mano en el pecho: estás bien. Esto pasará en 10-20 minutos."
            ),
        },
    ),
    CategoryRule(
        category=Category.TRAUMA,
        keyword_groups=(TRAUMA_KEYWORDS,),
        level=7,
        triggers=("PTSD", "Trauma response", "Flashback"),
        coping={
            "en": (
                "5-4-3-2-1 grounding NOW",
                "Smell something strong (coffee, essential oil)",
                "Bilateral stimulation: tap shoulders alternately",
                'Remind yourself: "That was then, this is now"',
            ),
            "es": (
                "Anclaje 5-4-3-2-1 AHORA",
                "Huele algo intenso (café, aceite esencial)",
                "Estimulación bilateral: toca tus hombros alternadamente",
                'Recuérdate: "Eso fue entonces, esto es ahora"',
            ),
        },
        response={
            "en": (
                "You're having a trauma response. You're safe now. Ground yourself: "
                "5 things you see, 4 you hear, 3 you touch. The flashback will pass."
            ),
            "es": (
                "Estás teniendo una respuesta al trauma. Ahora estás a salvo. Ánclate: "
                "5 cosas que ves, 4 que oyes, 3 que tocas. El recuerdo pasará."
            ),
        },
    ),
    CategoryRule(
        category=Category.OBSESSIVE_COMPULSIVE,
        keyword_groups=(OCD_KEYWORDS,),
        level=6,
        triggers=("OCD", "Intrusive thoughts", "Compulsions"),
        coping={
            "en": (
                "Delay the ritual by 5 minutes",
                "Write the thought down, then close the notebook",
                "Do opposite action (if checking, walk away)",
                "Remember: thoughts are not facts",
            ),
            "es": (
                "Retrasa el ritual 5 minutos",
                "Escribe el pensamiento y cierra el cuaderno",
                "Haz la acción opuesta (si revisas, aléjate)",
                "Recuerda: los pensamientos no son hechos",
            ),
        },
        response={
            "en": (
                "OCD is loud right now. Don't do the compulsion. Set a 5-minute timer - sit with "
                "the discomfort. The urge will peak and fade. You can handle this."
            ),
            "es": (
                "El TOC está muy fuerte ahora. No hagas la compulsión. Pon un temporizador de 5 minutos "
                "y quédate con la incomodidad. El impulso subirá y bajará. Puedes con esto."
            ),
        },
    ),
    CategoryRule(
        category=Category.VIOLENT_IDEATION,
        keyword_groups=(VIOLENT_KEYWORDS,),
        level=8,
        level_is_floor=True,
        triggers=("Crisis", "Severe distress", "Danger"),
        coping={
            "en": (
                "Leave the room immediately",
                "Count 10 breaths out loud",
                "Call 988 now or text HOME to 741741",
                "Go for a walk outside",
            ),
            "es": (
                "Sal de la habitación inmediatamente",
                "Cuenta 10 respiraciones en voz alta",
                "Llama al 988 ahora",
                "Sal a caminar afuera",
            ),
        },
        response={
            "en": (
                "Your pain is real. Right now: Step outside or to another room. Take 10 deep breaths, "
                "count them out loud. Then call 988 - they're available 24/7 to help you through this safely."
            ),
            "es": (
                "Tu dolor es real. Ahora mismo: sal afuera o a otra habitación. Respira profundo 10 veces, "
                "cuéntalas en voz alta. Luego llama al 988, están disponibles 24/7 para ayudarte con seguridad."
            ),
        },
    ),
    CategoryRule(
        category=Category.BETRAYAL_GRIEF,
        keyword_groups=(RELATIONSHIP_LOSS_KEYWORDS, DEPRESSION_KEYWORDS),
        level=6,
        level_is_floor=True,
        triggers=("Betrayal", "Loss", "Grief"),
        coping={
            "en": (
                "Breathe: 4-4-6 pattern, 5 times",
                "Call one trusted friend now",
                "Write your feelings for 10 minutes",
                "Take care of basics: eat, sleep, shower",
            ),
            "es": (
                "Respira: patrón 4-4-6, 5 veces",
                "Llama ahora a un amigo de confianza",
                "Escribe lo que sientes durante 10 minutos",
                "Cuida lo básico: come, duerme, dúchate",
            ),
        },
        response={
            "en": (
                "This betrayal is devastating. Right now, breathe: in for 4, hold for 4, out for 6. "
                "Do this 5 times. Then call one person who cares about you. This intense pain will ease with time."
            ),
            "es": (
                "Esta traición es devastadora. Ahora mismo, respira: inhala en 4, sostén 4, exhala en 6. "
                "Hazlo 5 veces. Luego llama a una persona que te quiera. Este dolor tan intenso se aliviará con el tiempo."
            ),
        },
    ),
    CategoryRule(
        category=Category.GENERALIZED_WORRY,
        keyword_groups=(GENERALIZED_WORRY_KEYWORDS,),
        level=6,
        triggers=("GAD", "Chronic worry", "Anxiety"),
        coping={
            "en": (
                "Worry time: set 15 min to worry, then stop",
                "Progressive muscle relaxation",
                'Challenge thoughts: "Is this likely?"',
                "Focus on ONE task for next hour",
            ),
            "es": (
                "Tiempo de preocupación: 15 minutos y luego para",
                "Relajación muscular progresiva",
                'Cuestiona tus pensamientos: "¿Es probable?"',
                "Concéntrate en UNA tarea durante la próxima hora",
            ),
        },
        response={
            "en": (
                "Constant worry is exhausting. Right now: write down your top 3 worries. "
                "Circle what you can control today. Start with the smallest one."
            ),
            "es": (
                "Preocuparse todo el tiempo agota. Ahora mismo: escribe tus 3 mayores preocupaciones. "
                "Marca lo que puedes controlar hoy. Empieza por lo más pequeño."
            ),
        },
    ),
    CategoryRule(
        category=Category.SADNESS,
        keyword_groups=(SADNESS_KEYWORDS,),
        level=5,
        triggers=("Sadness", "Low mood"),
        coping={
            "en": (
                "One small act of self-care now",
                "Walk outside for 5 minutes",
                "Text someone you trust",
                "Let yourself cry if you need to",
            ),
            "es": (
                "Un pequeño acto de autocuidado ahora",
                "Camina afuera 5 minutos",
                "Escríbele a alguien de confianza",
                "Permítete llorar si lo necesitas",
            ),
        },
        response={
            "en": (
                "I hear your sadness. It's okay to feel this way. Right now, do one kind thing for yourself - "
                "maybe a cup of tea or step outside for fresh air. What's making you sad?"
            ),
            "es": (
                "Escucho tu tristeza. Está bien sentirse así. Ahora mismo, haz algo amable por ti, "
                "quizás una taza de té o salir a tomar aire fresco. ¿Qué te está poniendo triste?"
            ),
        },
    ),
    CategoryRule(
        category=Category.ANXIETY,
        keyword_groups=(GENERAL_ANXIETY_KEYWORDS,),
        level=6,
        triggers=("Anxiety", "Worry"),
        coping={
            "en": (
                "4-7-8 breathing, 3 times",
                "Name 5 things you see",
                "Walk around the room",
                "Hold ice or cold water",
            ),
            "es": (
                "Respiración 4-7-8, 3 veces",
                "Nombra 5 cosas que ves",
                "Camina por la habitación",
                "Sostén hielo o agua fría",
            ),
        },
        response={
            "en": (
                "Anxiety is tough. Right now: breathe in for 4, hold for 7, out for 8. Do this 3 times. "
                "Then name 5 things you can see. This will help calm your nervous system."
            ),
            "es": (
                "La ansiedad es difícil. Ahora mismo: inhala en 4, sostén 7, exhala en 8. Hazlo 3 veces. "
                "Luego nombra 5 cosas que puedas ver. Esto ayudará a calmar tu sistema nervioso."
            ),
        },
    ),
    CategoryRule(
        category=Category.SLEEP,
        keyword_groups=(SLEEP_KEYWORDS,),
        level=5,
        triggers=("Insomnia", "Sleep anxiety"),
        coping={
            "en": (
                "4-7-8 breathing in bed",
                "Progressive muscle relaxation",
                "Write worries on paper, leave by bed",
                "Cool room, warm feet",
            ),
            "es": (
                "Respiración 4-7-8 en la cama",
                "Relajación muscular progresiva",
                "Escribe tus preocupaciones y déjalas junto a la cama",
                "Habitación fresca, pies calientes",
            ),
        },
        response={
            "en": (
                "Racing mind at night is hard. Try 4-7-8 breathing five times. Then do a body scan: "
                "tense and release each muscle group. No screens for next hour."
            ),
            "es": (
                "Una mente acelerada de noche es difícil. Prueba la respiración 4-7-8 cinco veces. "
                "Luego recorre tu cuerpo: tensa y suelta cada grupo muscular. Nada de pantallas la próxima hora."
            ),
        },
    ),
)


# ==================================
# No-match Templates
# ==================================

OVERWHELM_TRIGGERS: tuple[str, ...] = ("Stress", "Overwhelm")

OVERWHELM_COPING: dict[str, tuple[str, ...]] = {
    "en": ("Breathe: 4-4-6, three times", "Walk for 5 minutes", "Call a friend", "Write it out"),
    "es": ("Respira: 4-4-6, tres veces", "Camina 5 minutos", "Llama a un amigo", "Escríbelo"),
}

OVERWHELM_RESPONSE: dict[str, str] = {
    "en": (
        "You're dealing with something heavy. Let's breathe together: in for 4, hold for 4, out for 6. "
        "Do this 3 times. Then tell me what's happening."
    ),
    "es": (
        "Estás cargando con algo pesado. Respiremos juntos: inhala en 4, sostén 4, exhala en 6. "
        "Hazlo 3 veces. Luego cuéntame qué está pasando."
    ),
}

NEUTRAL_COPING: dict[str, tuple[str, ...]] = {
    "en": ("Deep breathing", "Take a walk", "Call someone", "Self-care"),
    "es": ("Respiración profunda", "Sal a caminar", "Llama a alguien", "Autocuidado"),
}

NEUTRAL_RESPONSES: dict[str, tuple[str, ...]] = {
    "en": (
        "I'm here. What's on your mind today?",
        "Thanks for reaching out. What's happening?",
        "I'm listening. Tell me what you're feeling.",
        "You're not alone. What's going on?",
    ),
    "es": (
        "Estoy aquí. ¿Qué tienes en mente hoy?",
        "Gracias por escribirme. ¿Qué está pasando?",
        "Te escucho. Cuéntame cómo te sientes.",
        "No estás solo. ¿Qué ocurre?",
    ),
}


def get_rule(category: Category) -> Optional[CategoryRule]:
    """Look up the branch rule for a category (None for no-match categories)."""
    for rule in CATEGORY_RULES:
        if rule.category == category:
            return rule
    return None
