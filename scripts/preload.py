"""
Preload README

1. Opens the configured database (STACKS_DB_URI or the DB_* variables)
2. Adds a small demo catalog, one book per category, each with a few copies
    - Books are keyed by ISBN so rerunning the script skips what already exists
3. Registers demo students so borrow requests and attendance can be tried
   straight away from /docs
"""

import argparse
import logging
from stacks.core.api import StacksAPI
from stacks.core.exceptions import BookExistsError, StudentExistsError

logger = logging.getLogger(__name__)


DEMO_BOOKS = [
    ("The Story of Philosophy", "Will Durant", "9780671739164", "Philosophy & Psychology"),
    ("Noli Me Tangere", "Jose Rizal", "9789710810736", "Literature"),
    ("A Brief History of Time", "Stephen Hawking", "9780553380163", "Science"),
    ("The Elements of Style", "William Strunk Jr.", "9780205309023", "Language"),
    ("Guns, Germs, and Steel", "Jared Diamond", "9780393317558", "History, Geography, & Biography"),
    ("The Design of Everyday Things", "Don Norman", "9780465050659", "Technology"),
    ("The Story of Art", "E. H. Gombrich", "9780714832470", "Arts & Recreation"),
    ("Freakonomics", "Steven D. Levitt", "9780060731328", "Social Sciences"),
    ("The World's Religions", "Huston Smith", "9780061660184", "Religion"),
    ("The Encyclopedia Britannica Guide", "Various", "9781593394943", "General Works"),
]

DEMO_STUDENTS = [
    ("2024-0001", "Maria Santos", "maria.santos@example.edu", "Grade 11"),
    ("2024-0002", "Juan Dela Cruz", "juan.delacruz@example.edu", "Grade 12"),
    ("2024-0003", "Ana Reyes", "ana.reyes@example.edu", "Grade 10"),
]


def preload(stacks: StacksAPI, copies: int = 2):
    for title, author, isbn, category in DEMO_BOOKS:
        try:
            book = stacks.catalog.add_book(title, author, isbn, category, copies=copies)
            logger.info(f"[Preloading] Added '{book.title}' ({len(book.copies)} copies)")
        except BookExistsError:
            logger.info(f"[Preloading] Skipping '{title}', ISBN {isbn} exists")
    for student_id, name, email, grade_level in DEMO_STUDENTS:
        try:
            stacks.students.register(student_id, name, email, grade_level)
        except StudentExistsError:
            logger.info(f"[Preloading] Skipping student {student_id}, already registered")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Preload a demo catalog into Stacks")
    parser.add_argument("-c", type=int, help="Copies per book", default=2)
    args = parser.parse_args()
    with StacksAPI() as stacks:
        preload(stacks, copies=args.c)
