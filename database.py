import logging
import sqlite3

from errors import DuplicateUser, StorageError
from models import User

logger = logging.getLogger(__name__)

class Database:
    def __init__(self, db_name="app.db"):
        """Open the SQLite users database and make sure its schema exists."""
        try:
            self.conn = sqlite3.connect(db_name, check_same_thread=False)
            self.create_tables()
        except sqlite3.Error as e:
            logger.error(f"Failed to open database {db_name}: {e}")
            raise StorageError() from e

    def create_tables(self):
        """Create database tables with appropriate indexes."""
        cursor = self.conn.cursor()
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                password TEXT NOT NULL,
                email TEXT UNIQUE,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_users_username ON users(username)')
        self.conn.commit()

    def add_user(self, user: User) -> int:
        """Add a user to the database and return the new row id."""
        try:
            cursor = self.conn.cursor()
            cursor.execute('''
                INSERT INTO users (username, password, email)
                VALUES (?, ?, ?)
            ''', (user.username, user.password, user.email))
            self.conn.commit()
            return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            if "users.email" in str(e):
                raise DuplicateUser("Email already registered") from e
            raise DuplicateUser() from e
        except sqlite3.Error as e:
            self.conn.rollback()
            logger.error(f"Error inserting user {user.username}: {e}")
            raise StorageError() from e

    def get_user_by_username(self, username: str) -> User | None:
        """Retrieve a user by username."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(
                'SELECT id, username, password, email, created_at, updated_at FROM users WHERE username = ?',
                (username,),
            )
            row = cursor.fetchone()
        except sqlite3.Error as e:
            logger.error(f"Error looking up user {username}: {e}")
            raise StorageError() from e
        if row:
            return User(
                id=row[0], username=row[1], password=row[2], email=row[3],
                created_at=row[4], updated_at=row[5],
            )
        return None

    def close(self):
        """Close the database connection."""
        self.conn.close()
