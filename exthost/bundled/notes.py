"""Notes: builtin extension keeping short notes in extension storage.

/note <text>   save a note
/note          list saved notes
/note clear    delete all notes
"""

NOTES_KEY = "notes"


def activate(api):
    async def note(args):
        text = (args or "").strip()
        notes = await api.storage.get(NOTES_KEY) or []
        if not text:
            if not notes:
                api.toast("No notes yet.")
            else:
                api.toast("\n".join(f"{i + 1}. {n}" for i, n in enumerate(notes)))
            return notes
        if text == "clear":
            await api.storage.delete(NOTES_KEY)
            api.toast("Notes cleared.")
            return []
        notes.append(text)
        await api.storage.set(NOTES_KEY, notes)
        api.toast(f"Saved note #{len(notes)}.")
        return notes

    async def list_notes(params, signal=None):
        notes = await api.storage.get(NOTES_KEY) or []
        return "\n".join(notes) if notes else "No notes saved."

    api.register_command("note", note, "Save or list quick notes")
    api.register_tool(
        "notes_list",
        {
            "label": "List notes",
            "description": "Return the user's saved quick notes, one per line.",
            "parameters": {"type": "object", "properties": {}},
            "execute": list_notes,
        },
    )
    api.logger.debug("notes extension activated")
