from typing import List

from lesson_engine.domain.interfaces.content_store import IContentStore
from lesson_engine.domain.schemas.curriculum import ContentFilter


async def build_prompt_context(
    content_store: IContentStore, week_id: int, day_index: int, activity_index: int = 0
) -> str:
    """Curriculum position lines (week, day, activity N of M) for prompt injection."""
    day_units = await content_store.list_content_units(
        ContentFilter(week_id=week_id, day_index=day_index)
    )
    if not day_units:
        week_units = await content_store.list_content_units(ContentFilter(week_id=week_id))
        if not week_units:
            return f"⚠️ Error de contexto: Semana {week_id} no encontrada en el currículo."
        first = week_units[0]
        return "\n".join(
            [
                "📚 CONTEXTO DEL CURRÍCULO",
                "",
                f"**Semana {week_id}:** {first.week_title}",
                f"**Temática Semanal:** {first.topic or 'N/A'}",
                "",
                f"⚠️ Día {day_index} no encontrado en semana {week_id}.",
            ]
        )

    current = next((u for u in day_units if u.activity_index == activity_index), None)
    activity_text = current.text if current is not None else "Actividad no especificada"
    head = day_units[0]

    lines: List[str] = [
        "📚 CONTEXTO DEL CURRÍCULO",
        "",
        f"**Semana {week_id}:** {head.week_title}",
        f"**Temática Semanal:** {head.topic or 'N/A'}",
        "",
        f"**Día {day_index}:** {head.day_concept}",
        f"**Actividad {activity_index + 1} de {len(day_units)}:** {activity_text}",
    ]
    others = [u for u in day_units if u.activity_index != activity_index]
    if others:
        lines.extend(["", "**Otras actividades del día:**"])
        lines.extend(f"  - {u.text}" for u in others[:3])
    return "\n".join(lines)
