import enum


class Signal(enum.Enum):
    CONTINUE = "continue"
    TO_SEARCH = "to_search"
    TO_LIVE = "to_live"
    QUIT = "quit"


PAGE_SIZE = 10


def edit(key, editor):
    """Apply an editing key to the text editor. Returns False for keys it does not handle."""
    if key == "backspace":
        editor.backspace()
    elif key == "delete":
        editor.delete()
    elif key == "left":
        editor.move_left()
    elif key == "right":
        editor.move_right()
    elif key in ("home", "ctrl-a"):
        editor.move_to_head()
    elif key in ("end", "ctrl-e"):
        editor.move_to_tail()
    elif key == "ctrl-u":
        editor.clear()
    elif len(key) == 1 and key.isprintable():
        editor.insert(key)
    else:
        return False
    return True


def live(key, editor):
    """Keymap of the live tail view."""
    if key == "ctrl-c":
        return Signal.QUIT
    if key == "ctrl-f":
        return Signal.TO_SEARCH
    if key == "ctrl-r":
        return Signal.TO_LIVE
    edit(key, editor)
    return Signal.CONTINUE


def dig(key, editor, listbox):
    """Keymap of the search view."""
    if key == "ctrl-c":
        return Signal.QUIT
    if key == "esc":
        return Signal.TO_LIVE
    if key == "up":
        listbox.move_up()
    elif key == "down":
        listbox.move_down()
    elif key == "pageup":
        listbox.move_up(PAGE_SIZE)
    elif key == "pagedown":
        listbox.move_down(PAGE_SIZE)
    else:
        edit(key, editor)
    return Signal.CONTINUE
