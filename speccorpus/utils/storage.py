"""
Storage utility.

File I/O for everything the orchestrator persists: atomic JSON state
files, one Markdown document per spec, and the planning and operator
notes documents.
"""

import json
import logging
import os
import shutil
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def write_json_atomic(path: str, data: Any) -> None:
    """
    Persist JSON with the backup + temp file + rename pattern.

    Raises:
        OSError: If the write or rename fails (the temp file is removed)
    """
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    if os.path.exists(path):
        backup_path = f"{path}.backup"
        shutil.copy(path, backup_path)
        logger.debug(f"Created backup: {backup_path}")

    temp_path = f"{path}.tmp"
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(temp_path, path)
    except Exception as e:
        logger.error(f"Failed to write {path}: {e}")
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise


def load_json_with_backup(path: str) -> Optional[Any]:
    """
    Load a JSON state file, falling back to `<path>.backup` if it is corrupted.

    Returns:
        Parsed JSON, or None when neither the file nor a usable backup exists
    """
    if not os.path.exists(path):
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.error(f"Failed to load {path}: {e}")

    backup_path = f"{path}.backup"
    if not os.path.exists(backup_path):
        logger.warning(f"No backup file found for {path}. Starting empty.")
        return None

    logger.warning(f"Attempting to restore from backup: {backup_path}")
    try:
        with open(backup_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        shutil.copy(backup_path, path)
        logger.info(f"Successfully restored {path} from backup")
        return data
    except (json.JSONDecodeError, OSError) as e:
        logger.error(f"Backup restoration failed: {e}. Starting empty.")
        return None


class SpecStorage:
    """
    One named Markdown document per spec under `specs_dir`.
    """

    EXTENSION = ".md"

    def __init__(self, specs_dir: str):
        self.specs_dir = specs_dir
        os.makedirs(self.specs_dir, exist_ok=True)
        logger.info(f"Initialized SpecStorage with specs_dir={specs_dir}")

    def path_for(self, file_name: str) -> str:
        return os.path.join(self.specs_dir, f"{file_name}{self.EXTENSION}")

    def write_document(self, file_name: str, content: str) -> str:
        """Write (or overwrite) one document; return its path."""
        path = self.path_for(file_name)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        logger.debug(f"Wrote spec document {path}")
        return path

    def read_document(self, file_name: str) -> Optional[str]:
        path = self.path_for(file_name)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def delete_document(self, file_name: str) -> Optional[str]:
        """Remove one document; return its path if it existed."""
        path = self.path_for(file_name)
        if not os.path.exists(path):
            return None
        os.remove(path)
        logger.info(f"Deleted spec document {path}")
        return path

    def list_documents(self) -> List[str]:
        """Sorted file names (without extension) of all stored documents."""
        names = []
        for filename in os.listdir(self.specs_dir):
            if filename.endswith(self.EXTENSION):
                names.append(filename[: -len(self.EXTENSION)])
        return sorted(names)


class PlanningNotes:
    """
    Running planning notes, one `## <topic-id>` section per topic.

    Context only: the registry stays the authoritative state. Updating a
    topic's section never touches other sections or the preamble.
    """

    HEADER = "# Planning notes"

    def __init__(self, path: str):
        self.path = path

    def _read_lines(self) -> List[str]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return f.read().splitlines()

    def _split(self) -> tuple:
        preamble: List[str] = []
        sections: Dict[str, List[str]] = {}
        order: List[str] = []
        current = None
        for line in self._read_lines():
            if line.startswith("## "):
                current = line[3:].strip()
                if current not in sections:
                    order.append(current)
                    sections[current] = []
                continue
            if current is None:
                preamble.append(line)
            else:
                sections[current].append(line)
        return preamble, sections, order

    def read(self, topic_id: str) -> str:
        """Section body for a topic, or an empty string."""
        _, sections, _ = self._split()
        return "\n".join(sections.get(topic_id, [])).strip()

    def update(self, topic_id: str, text: str) -> None:
        """Replace (or append) the section for a topic."""
        preamble, sections, order = self._split()
        if not preamble:
            preamble = [self.HEADER, ""]
        if topic_id not in sections:
            order.append(topic_id)
        sections[topic_id] = [text.strip(), ""]

        lines = list(preamble)
        for key in order:
            lines.append(f"## {key}")
            lines.extend(sections[key])

        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines).rstrip() + "\n")

    def append(self, topic_id: str, line: str) -> None:
        """Append one line to a topic's section."""
        existing = self.read(topic_id)
        self.update(topic_id, f"{existing}\n{line}" if existing else line)


class OperatorNotes:
    """
    Brief operational notes: one `- **key**: fact` bullet per durable fact.
    Recording a fact edits only its own line.
    """

    HEADER = "# Operator notes"

    def __init__(self, path: str):
        self.path = path

    def _read_lines(self) -> List[str]:
        if not os.path.exists(self.path):
            return [self.HEADER, ""]
        with open(self.path, "r", encoding="utf-8") as f:
            return f.read().splitlines()

    @staticmethod
    def _prefix(key: str) -> str:
        return f"- **{key}**:"

    def facts(self) -> Dict[str, str]:
        result = {}
        for line in self._read_lines():
            if line.startswith("- **") and "**:" in line:
                key, _, fact = line[4:].partition("**:")
                result[key] = fact.strip()
        return result

    def record(self, key: str, fact: str) -> bool:
        """
        Add or edit a fact. Returns False when the fact was already recorded verbatim.
        """
        lines = self._read_lines()
        new_line = f"{self._prefix(key)} {fact.strip()}"
        for i, line in enumerate(lines):
            if line.startswith(self._prefix(key)):
                if line == new_line:
                    return False
                lines[i] = new_line
                break
        else:
            lines.append(new_line)

        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines).rstrip() + "\n")
        logger.info(f"Recorded operator fact '{key}'")
        return True
