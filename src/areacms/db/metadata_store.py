"""Tenant-scoped metadata store for files and their translations.

Every query carries ``project_id`` in its predicate. Translation writes are
delete-then-reinsert inside the file's transaction, backed by the
``(file_id, language_id)`` unique constraint.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Mapping, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from areacms.core.config import Settings
from areacms.core.errors import FileNotFound, LanguageNotFound, TransactionFailed, UploadError
from areacms.db.models import Base, FileRecord, FileTranslationRecord, Language, utcnow
from areacms.db.session import create_session_maker, get_session
from areacms.models.files import FileTranslation, FileType, StoredFile, TranslationInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobPaths:
    """Replacement blob keys for an existing file."""

    path: str
    thumbnail_path: Optional[str] = None


def _to_translation(record: FileTranslationRecord, locale: str) -> FileTranslation:
    return FileTranslation(
        id=record.id,
        file_id=record.file_id,
        language_id=record.language_id,
        locale=locale,
        title=record.title,
        description=record.description,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _to_stored_file(record: FileRecord, translations: Sequence[FileTranslation] = ()) -> StoredFile:
    return StoredFile(
        id=record.id,
        project_id=record.project_id,
        name=record.name,
        type=FileType(record.type),
        path=record.path,
        thumbnail_path=record.thumbnail_path,
        translations=list(translations),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class MetadataStore:
    """Relational store for files, file translations and languages."""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "MetadataStore":
        return cls(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

    async def init(self) -> None:
        """Create the engine and any missing tables."""
        if self._engine is not None:
            return
        self._engine, self._session_maker = create_session_maker(self.database_url, self.echo)
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Metadata store initialized", extra={"dialect": self._engine.dialect.name})

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None

    def _require_session_maker(self) -> async_sessionmaker[AsyncSession]:
        if self._session_maker is None:
            raise RuntimeError("MetadataStore.init() has not been called")
        return self._session_maker

    @asynccontextmanager
    async def _transaction(
        self, operation: str, read_only: bool = False
    ) -> AsyncGenerator[AsyncSession, None]:
        """Run one transaction, wrapping database errors as TransactionFailed."""
        try:
            async with get_session(self._require_session_maker(), read_only=read_only) as session:
                yield session
        except UploadError:
            raise
        except SQLAlchemyError as e:
            logger.error(
                "Metadata transaction failed",
                extra={"operation": operation, "error": str(e)},
                exc_info=True,
            )
            raise TransactionFailed(f"{operation} failed: {e.__class__.__name__}") from e

    # Languages

    async def create_language(self, project_id: int, locale: str, name: str) -> int:
        async with self._transaction("create language") as session:
            language = Language(project_id=project_id, locale=locale, name=name)
            session.add(language)
            await session.flush()
            return language.id

    @staticmethod
    async def _language_id(session: AsyncSession, project_id: int, locale: str) -> Optional[int]:
        result = await session.execute(
            select(Language.id).where(Language.project_id == project_id, Language.locale == locale)
        )
        return result.scalar_one_or_none()

    async def get_language_id(self, project_id: int, locale: str) -> Optional[int]:
        async with self._transaction("resolve language", read_only=True) as session:
            return await self._language_id(session, project_id, locale)

    # Translations

    async def _insert_translations(
        self,
        session: AsyncSession,
        project_id: int,
        file_id: int,
        translations: Mapping[str, TranslationInput],
    ) -> list[FileTranslation]:
        rows: list[tuple[FileTranslationRecord, str]] = []
        for locale, translation in translations.items():
            language_id = await self._language_id(session, project_id, locale)
            if language_id is None:
                raise LanguageNotFound(locale, project_id)
            record = FileTranslationRecord(
                file_id=file_id,
                language_id=language_id,
                title=translation.title,
                description=translation.description,
            )
            session.add(record)
            rows.append((record, locale))

        await session.flush()
        return [_to_translation(record, locale) for record, locale in rows]

    @staticmethod
    async def _load_translations(
        session: AsyncSession, file_ids: Sequence[int]
    ) -> dict[int, list[FileTranslation]]:
        by_file: dict[int, list[FileTranslation]] = {file_id: [] for file_id in file_ids}
        if not file_ids:
            return by_file
        result = await session.execute(
            select(FileTranslationRecord, Language.locale)
            .join(Language, Language.id == FileTranslationRecord.language_id)
            .where(FileTranslationRecord.file_id.in_(file_ids))
            .order_by(FileTranslationRecord.file_id, Language.locale)
        )
        for record, locale in result.all():
            by_file[record.file_id].append(_to_translation(record, locale))
        return by_file

    # Files

    async def create_file(
        self,
        project_id: int,
        name: str,
        file_type: FileType,
        path: str,
        thumbnail_path: Optional[str] = None,
        translations: Optional[Mapping[str, TranslationInput]] = None,
    ) -> StoredFile:
        """Insert a file row and its translations in one transaction.

        Raises:
            LanguageNotFound: If a locale is not configured for the project
            TransactionFailed: If the transaction cannot be committed
        """
        async with self._transaction("create file") as session:
            record = FileRecord(
                project_id=project_id,
                name=name,
                type=file_type.value,
                path=path,
                thumbnail_path=thumbnail_path,
            )
            session.add(record)
            await session.flush()

            saved_translations = await self._insert_translations(
                session, project_id, record.id, translations or {}
            )

        logger.info(
            "File record created",
            extra={"project_id": project_id, "file_id": record.id, "storage_key": path},
        )
        return _to_stored_file(record, saved_translations)

    async def get_file(self, project_id: int, file_id: int) -> Optional[StoredFile]:
        async with self._transaction("get file", read_only=True) as session:
            record = await self._get_record(session, project_id, file_id)
            if record is None:
                return None
            translations = await self._load_translations(session, [record.id])
            return _to_stored_file(record, translations[record.id])

    @staticmethod
    async def _get_record(
        session: AsyncSession, project_id: int, file_id: int, for_update: bool = False
    ) -> Optional[FileRecord]:
        query = select(FileRecord).where(FileRecord.id == file_id, FileRecord.project_id == project_id)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def list_files(
        self,
        project_id: int,
        file_type: Optional[FileType] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[StoredFile], int]:
        """Return one page of a project's files, newest first, and the total count."""
        conditions = [FileRecord.project_id == project_id]
        if file_type is not None:
            conditions.append(FileRecord.type == file_type.value)

        async with self._transaction("list files", read_only=True) as session:
            total = (
                await session.execute(select(func.count()).select_from(FileRecord).where(*conditions))
            ).scalar_one()
            result = await session.execute(
                select(FileRecord)
                .where(*conditions)
                .order_by(FileRecord.created_at.desc(), FileRecord.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            records = list(result.scalars().all())
            translations = await self._load_translations(session, [r.id for r in records])
            return [_to_stored_file(r, translations[r.id]) for r in records], total

    async def update_file(
        self,
        project_id: int,
        file_id: int,
        *,
        name: Optional[str] = None,
        blob_paths: Optional[BlobPaths] = None,
        translations: Optional[Mapping[str, TranslationInput]] = None,
    ) -> StoredFile:
        """Update name, blob keys and/or translations of an existing file.

        ``translations`` replaces every existing translation when given.
        The id, project and type never change.

        Raises:
            FileNotFound: If the file does not exist in the project
            LanguageNotFound: If a locale is not configured for the project
            TransactionFailed: If the transaction cannot be committed
        """
        async with self._transaction("update file") as session:
            record = await self._get_record(session, project_id, file_id, for_update=True)
            if record is None:
                raise FileNotFound(f"File {file_id} not found")

            if name is not None:
                record.name = name
            if blob_paths is not None:
                record.path = blob_paths.path
                record.thumbnail_path = blob_paths.thumbnail_path
            record.updated_at = utcnow()

            if translations is not None:
                await session.execute(
                    delete(FileTranslationRecord).where(FileTranslationRecord.file_id == record.id)
                )
                await self._insert_translations(session, project_id, record.id, translations)

            await session.flush()
            loaded = await self._load_translations(session, [record.id])

        return _to_stored_file(record, loaded[record.id])

    async def delete_file(self, project_id: int, file_id: int) -> Optional[StoredFile]:
        """Delete a file row and its translations; return what was deleted."""
        deleted = await self.delete_files(project_id, [file_id])
        return deleted[0] if deleted else None

    async def delete_files(self, project_id: int, file_ids: Sequence[int]) -> list[StoredFile]:
        """Delete the project's files among ``file_ids``; return the deleted rows."""
        if not file_ids:
            return []

        async with self._transaction("delete files") as session:
            result = await session.execute(
                select(FileRecord).where(
                    FileRecord.id.in_(file_ids), FileRecord.project_id == project_id
                )
            )
            deleted = [_to_stored_file(record) for record in result.scalars().all()]
            found_ids = [stored.id for stored in deleted]
            if found_ids:
                await session.execute(
                    delete(FileTranslationRecord).where(FileTranslationRecord.file_id.in_(found_ids))
                )
                await session.execute(
                    delete(FileRecord).where(
                        FileRecord.id.in_(found_ids), FileRecord.project_id == project_id
                    )
                )

        logger.info(
            "File records deleted",
            extra={"project_id": project_id, "file_ids": found_ids},
        )
        return deleted
