"""
Wizard Service - The import wizard state machine.

One generic :class:`ImportPipeline` drives the contacts, transactions and
chart of accounts imports. Entity differences (steps, record transformation,
step validity, blank-row and missing-job-id policies) are injected through a
:class:`PipelineConfig`.

Typical flow::

    pipeline = contacts_pipeline(ImportApiClient('contacts'))
    await pipeline.load_fields()
    await pipeline.select_file(UploadedFile.from_path('contacts.xlsx'))
    await pipeline.advance()              # upload -> mapping (auto-maps)
    pipeline.update_mapping('email', 'E-mail address')
    await pipeline.advance()              # mapping -> review (transforms)
    pipeline.toggle('contact-3')
    await pipeline.advance()              # review -> submit -> results
    results = await pipeline.wait_for_results()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import (
    Any, Callable, Dict, Generic, List, Optional, Type, TypeVar
)

from pydantic import BaseModel

from services.exceptions import JobFailure, ParseError, TransportError, ValidationError
from services.field_catalog import (
    ACCOUNTS, CONTACTS, DEFAULT_ACCOUNT_FIELDS, DEFAULT_CONTACT_FIELDS, TRANSACTIONS,
    FieldDefinition, default_date_format, sample_filename, transaction_date_formats
)
from services.mapping_service import MappingEngine
from services.notifications import LoggingNotifier, Notifier
from services.record_service import (
    AccountCandidate, AccountImportOptions, CandidateRecord, ContactCandidate,
    ContactImportOptions, LedgerAccount, TransactionCandidate, TransactionImportOptions,
    importable_accounts, transform_accounts, transform_contacts, transform_transactions
)
from services.selection_service import SelectionSet, plan_upload
from services.submission_service import (
    DEFAULT_POLL_INTERVAL, Deferred, Immediate, ImportResults,
    ImportSubmitter, PollHandle, ProgressPoller
)
from services.workbook_service import RawWorkbook, UploadedFile, WorkbookDecoder, validate_upload

logger = logging.getLogger(__name__)

TRecord = TypeVar('TRecord', bound=CandidateRecord)
TOptions = TypeVar('TOptions', bound=BaseModel)


class ContactsStep(IntEnum):
    UPLOAD = 1
    MAPPING = 2
    REVIEW = 3
    RESULTS = 4

    @property
    def title(self) -> str:
        return {
            ContactsStep.UPLOAD: 'Upload File',
            ContactsStep.MAPPING: 'File Setup',
            ContactsStep.REVIEW: 'Review & Select',
            ContactsStep.RESULTS: 'Results',
        }[self]


class TransactionsStep(IntEnum):
    UPLOAD = 1
    ACCOUNT = 2
    FILE_SETUP = 3
    REVIEW = 4
    RESULTS = 5

    @property
    def title(self) -> str:
        return {
            TransactionsStep.UPLOAD: 'Upload File',
            TransactionsStep.ACCOUNT: 'Select Account',
            TransactionsStep.FILE_SETUP: 'File Setup',
            TransactionsStep.REVIEW: 'Review & Select',
            TransactionsStep.RESULTS: 'Results',
        }[self]


class AccountsStep(IntEnum):
    UPLOAD = 1
    MAPPING = 2
    REVIEW = 3
    RESULTS = 4

    @property
    def title(self) -> str:
        return {
            AccountsStep.UPLOAD: 'Upload / Select',
            AccountsStep.MAPPING: 'Map Fields',
            AccountsStep.REVIEW: 'Review & Select',
            AccountsStep.RESULTS: 'Results',
        }[self]


@dataclass
class WizardState(Generic[TRecord, TOptions]):
    """Everything one wizard instance knows; reset wholesale on close."""

    step: IntEnum
    options: TOptions
    upload: Optional[UploadedFile] = None
    workbook: Optional[RawWorkbook] = None
    has_header_row: bool = True
    candidates: List[TRecord] = field(default_factory=list)
    selection: SelectionSet = field(default_factory=SelectionSet)
    import_id: Optional[str] = None
    results: Optional[ImportResults] = None
    is_loading: bool = False
    is_submitting: bool = False
    error: Optional[str] = None

    @property
    def headers(self) -> List[str]:
        return self.workbook.headers if self.workbook else []


@dataclass(frozen=True)
class PipelineConfig(Generic[TRecord, TOptions]):
    """
    Entity-specific strategies for an :class:`ImportPipeline`.

    Attributes:
        entity: 'contacts', 'transactions' or 'accounts'
        steps: Step enum; its first and last members bound navigation
        mapping_step: Leaving it transforms the file into candidates
        review_step: Leaving it submits the import
        transform: Pure (workbook, mapping, options) -> candidates function
        validators: Step -> predicate deciding if "Continue" is enabled
        default_options: Factory for the initial options
        job_fields: Options -> form fields sent with the import
        drop_blank_rows: Remove fully blank rows while decoding
        on_immediate: Builds results when the backend returns no job id;
            ``None`` treats a missing job id as a failed submission
        fallback_fields: Fields used when the catalog is empty
        empty_selection_imports_all: An empty selection submits the whole file
        export_sheet: Sheet name of the selection-filtered workbook
        export_filename: File name of the selection-filtered workbook
        column_mode: Options -> column mode passed to catalog queries
    """

    entity: str
    steps: Type[IntEnum]
    mapping_step: IntEnum
    review_step: IntEnum
    transform: Callable[[RawWorkbook, Dict[str, str], Any], List[Any]]
    validators: Dict[IntEnum, Callable[['ImportPipeline'], bool]]
    default_options: Callable[[], Any]
    job_fields: Callable[[Any], Dict[str, Any]]
    drop_blank_rows: bool = True
    on_immediate: Optional[Callable[['ImportPipeline', Immediate], ImportResults]] = None
    fallback_fields: Optional[List[FieldDefinition]] = None
    empty_selection_imports_all: bool = True
    export_sheet: str = 'Sheet1'
    export_filename: str = 'filtered_import.xlsx'
    column_mode: Callable[[Any], Optional[str]] = lambda options: None

    @property
    def first_step(self) -> IntEnum:
        return list(self.steps)[0]

    @property
    def results_step(self) -> IntEnum:
        return list(self.steps)[-1]


class ImportPipeline(Generic[TRecord, TOptions]):
    """
    Linear import wizard: upload, mapping, review, submit, results.

    ``next_step``/``prev_step``/``go_to_step`` are plain transitions and do
    not consult :meth:`can_proceed`; that check gates the "Continue" control
    only. :meth:`advance` is the Continue action and runs the side effects
    attached to leaving the mapping and review steps.

    The state layer does no locking: one file parse or submission is expected
    in flight at a time.
    """

    def __init__(self, config: PipelineConfig, gateway, notifier: Optional[Notifier] = None,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
                 accounts: Optional[List[LedgerAccount]] = None):
        self.config = config
        self.on_progress = on_progress
        self.gateway = gateway
        self.notifier = notifier or LoggingNotifier()
        self.poll_interval = poll_interval
        self.decoder = WorkbookDecoder(drop_blank_rows=config.drop_blank_rows)
        self.mapping = MappingEngine(fallback_fields=config.fallback_fields)
        self.submitter = ImportSubmitter(gateway)
        self.accounts = accounts
        self._poll_handle: Optional[PollHandle] = None
        self._reload_fields = False
        self.state: WizardState = self._initial_state()

    def _initial_state(self) -> WizardState:
        return WizardState(step=self.config.first_step, options=self.config.default_options())

    @property
    def step(self) -> IntEnum:
        return self.state.step

    @property
    def fields(self) -> List[FieldDefinition]:
        return self.mapping.fields

    @property
    def date_formats(self) -> List[str]:
        if self.config.entity == TRANSACTIONS:
            return transaction_date_formats(self.mapping.date_formats)
        return list(self.mapping.date_formats)

    @property
    def eligible_accounts(self) -> Optional[List[LedgerAccount]]:
        """Accounts offered on the account step; None when no account list was given."""
        if self.accounts is None:
            return None
        return importable_accounts(self.accounts)

    # ------------------------------------------------------------------
    # Field catalog
    # ------------------------------------------------------------------

    async def load_fields(self) -> bool:
        """
        Fetch the field catalog for the current options.

        A failure is recorded on the mapping engine (for a "Try again"
        affordance) rather than raised.
        """
        self.mapping.begin_loading()
        column_mode = self.config.column_mode(self.state.options)
        try:
            catalog = await self.gateway.fetch_fields(column_mode)
        except TransportError as e:
            logger.error(f"Could not load {self.config.entity} import fields: {e}")
            self.mapping.fail_loading(e.message)
            return False

        self.mapping.load_catalog(catalog)
        self._reload_fields = False
        options = self.state.options
        if 'date_format' in type(options).model_fields and not options.date_format and self.date_formats:
            self._update_options(date_format=default_date_format(self.date_formats))
        self._auto_map_on_mapping_step()
        return True

    def _auto_map_on_mapping_step(self):
        if self.state.step == self.config.mapping_step:
            self.mapping.auto_map(self.state.headers)

    # ------------------------------------------------------------------
    # Upload step
    # ------------------------------------------------------------------

    async def select_file(self, upload: UploadedFile) -> bool:
        """
        Validate and decode a file; on success it replaces any previous one.

        Validation and parse errors are notified, kept as the inline error,
        and leave the previously selected file untouched.
        """
        try:
            validate_upload(upload)
        except ValidationError as e:
            self._fail(e.message)
            return False

        self.state.is_loading = True
        self.state.error = None
        try:
            workbook = await self.decoder.decode(upload, self.state.has_header_row)
        except ParseError as e:
            self._fail(e.message)
            return False
        finally:
            self.state.is_loading = False

        self.state.upload = upload
        self.state.workbook = workbook
        logger.info(f"Selected {upload.filename}: {len(workbook.headers)} columns, "
                    f"{len(workbook.rows)} data rows")
        self._auto_map_on_mapping_step()
        return True

    def remove_file(self):
        self.state.upload = None
        self.state.workbook = None

    async def download_sample(self, destination: Path) -> Optional[Path]:
        """
        Save the sample template; a directory destination gets the default name.

        Returns:
            The written path, or None if the download failed
        """
        column_mode = self.config.column_mode(self.state.options)
        try:
            content = await self.gateway.download_sample(column_mode)
        except TransportError as e:
            logger.error(f"Sample download failed: {e}")
            self.notifier.error('Failed to download sample file')
            return None

        destination = Path(destination)
        if destination.is_dir():
            destination = destination / sample_filename(self.config.entity, column_mode)
        await asyncio.to_thread(destination.write_bytes, content)
        logger.info(f"Saved sample file to {destination}")
        return destination

    # ------------------------------------------------------------------
    # Mapping / file setup step
    # ------------------------------------------------------------------

    def set_has_header_row(self, has_header_row: bool):
        self.state.has_header_row = has_header_row
        if self.state.workbook is not None:
            self.state.workbook = self.state.workbook.with_header_row(has_header_row)
            self._auto_map_on_mapping_step()

    def update_mapping(self, field_key: str, column: Optional[str]):
        self.mapping.set_mapping(field_key, column)

    async def set_options(self, **changes) -> TOptions:
        """
        Update entity options; a column mode change reloads the field catalog.
        """
        previous_mode = self.config.column_mode(self.state.options)
        options = self._update_options(**changes)
        if self.config.column_mode(options) != previous_mode:
            await self.load_fields()
        return options

    def _update_options(self, **changes) -> TOptions:
        current = self.state.options
        self.state.options = type(current).model_validate({**current.model_dump(), **changes})
        return self.state.options

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def can_proceed(self) -> bool:
        validator = self.config.validators.get(self.state.step)
        return bool(validator and validator(self))

    def next_step(self):
        steps = list(self.config.steps)
        position = steps.index(self.state.step)
        if position < len(steps) - 1:
            self._transition(steps[position + 1])

    def prev_step(self):
        steps = list(self.config.steps)
        position = steps.index(self.state.step)
        if position > 0:
            self._transition(steps[position - 1])

    def go_to_step(self, step):
        """
        Jump directly to a step.

        Raises:
            ValueError: If ``step`` is not a step of this wizard
        """
        self._transition(self.config.steps(step))

    def _transition(self, step: IntEnum):
        previous = self.state.step
        self.state.step = step
        logger.debug(f"{self.config.entity} wizard: {previous.name} -> {step.name}")

        if previous == self.config.results_step and step != previous:
            self.stop_polling()
        self._auto_map_on_mapping_step()

    async def advance(self) -> bool:
        """
        The "Continue" action.

        Leaving the mapping step transforms the file first; leaving the review
        step submits instead of moving one step forward. Entering the mapping
        step after a reset fetches the field catalog again.
        """
        step = self.state.step
        if step == self.config.review_step:
            return await self.submit()
        if step == self.config.mapping_step:
            self.prepare_review()

        steps = list(self.config.steps)
        position = steps.index(step)
        entering_mapping = position + 1 < len(steps) and steps[position + 1] == self.config.mapping_step
        if entering_mapping and self._reload_fields:
            await self.load_fields()
        self.next_step()
        return True

    # ------------------------------------------------------------------
    # Review step
    # ------------------------------------------------------------------

    def prepare_review(self) -> List[TRecord]:
        """Transform the file with the current mapping and options."""
        if self.state.workbook is None:
            records = []
        else:
            records = self.config.transform(self.state.workbook, dict(self.mapping.mapping),
                                            self.state.options)
        self.set_candidates(records)
        return records

    def set_candidates(self, records: List[TRecord]):
        """Replace all candidates; the selection resets to all of them."""
        self.state.candidates = list(records)
        self.state.selection.replace(record.id for record in self.state.candidates)

    def toggle(self, candidate_id: str) -> bool:
        return self.state.selection.toggle(candidate_id)

    def select_all(self):
        self.state.selection.select_all()

    def deselect_all(self):
        self.state.selection.deselect_all()

    # ------------------------------------------------------------------
    # Submission and results
    # ------------------------------------------------------------------

    async def submit(self) -> bool:
        """
        Start the import job.

        Returns:
            True if the wizard moved to the results step
        """
        state = self.state
        if state.upload is None or state.workbook is None:
            return False

        if not state.selection and not self.config.empty_selection_imports_all:
            self._fail('Select at least one record to import')
            return False

        upload = state.upload
        try:
            filtered = plan_upload(state.workbook, state.candidates, state.selection,
                                   self.config.export_sheet, self.config.export_filename)
        except Exception as e:
            logger.error(f"Failed to build filtered export: {e}", exc_info=True)
            self.notifier.error('Failed to process selected records. Importing all.')
            filtered = None
        if filtered is not None:
            upload = filtered

        state.is_loading = True
        state.is_submitting = True
        state.error = None
        try:
            outcome = await self.submitter.submit(upload, self.mapping.mapping,
                                                  self.config.job_fields(state.options))
        except TransportError as e:
            state.is_loading = False
            self._fail(e.message or 'Failed to start import')
            return False
        finally:
            state.is_submitting = False

        if isinstance(outcome, Deferred):
            self.notifier.success('Import started successfully')
            state.import_id = outcome.import_id
            self.go_to_step(self.config.results_step)
            self._start_polling(outcome.import_id)
            return True

        if self.config.on_immediate is None:
            logger.warning(f"{self.config.entity} import returned no job id")
            state.is_loading = False
            self._fail('Import did not return a job id')
            return False

        self.notifier.success('Import started successfully')
        state.results = self.config.on_immediate(self, outcome)
        state.is_loading = False
        self.go_to_step(self.config.results_step)
        return True

    def _start_polling(self, import_id: str):
        self.stop_polling()
        poller = ProgressPoller(
            self.gateway.get_progress,
            interval=self.poll_interval,
            on_complete=self._on_results,
            on_error=self._on_poll_error,
            on_update=self.on_progress
        )
        self._poll_handle = poller.start(import_id)

    def _on_results(self, results: ImportResults):
        self.state.results = results
        self.state.is_loading = False

    def _on_poll_error(self, error: TransportError):
        self.state.is_loading = False
        self._fail('Failed to get import progress')

    def stop_polling(self):
        """Stop polling locally; the backend job is not cancelled."""
        if self._poll_handle is not None:
            self._poll_handle.cancel()
            self._poll_handle = None

    async def wait_for_results(self) -> Optional[ImportResults]:
        if self._poll_handle is not None:
            await self._poll_handle.wait()
        return self.state.results

    def raise_for_failure(self):
        """
        Raises:
            JobFailure: If the job reported a terminal failed status
        """
        results = self.state.results
        if results is not None and results.status == 'failed':
            raise JobFailure(results)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> bool:
        """
        Reset and close the wizard; refused while a submission is pending.
        """
        if self.state.is_submitting:
            logger.info(f"Refusing to close {self.config.entity} wizard during submission")
            return False
        self.reset()
        return True

    def reset(self):
        """
        Back to a fresh wizard. The field catalog depends on the options being
        reset, so it is dropped and fetched again before the next mapping step.
        """
        self.stop_polling()
        self.mapping.reset(catalog=True)
        self._reload_fields = True
        self.state = self._initial_state()

    def _fail(self, message: str):
        self.notifier.error(message)
        self.state.error = message


# ----------------------------------------------------------------------
# Contacts
# ----------------------------------------------------------------------

def _synthesize_results(pipeline: ImportPipeline, outcome: Immediate) -> ImportResults:
    selected = len(pipeline.state.selection)
    count = selected if selected > 0 else len(pipeline.state.candidates)
    return ImportResults.synthesized(count)


CONTACTS_CONFIG: PipelineConfig[ContactCandidate, ContactImportOptions] = PipelineConfig(
    entity=CONTACTS,
    steps=ContactsStep,
    mapping_step=ContactsStep.MAPPING,
    review_step=ContactsStep.REVIEW,
    transform=transform_contacts,
    validators={
        ContactsStep.UPLOAD: lambda p: p.state.upload is not None,
        ContactsStep.MAPPING: lambda p: p.mapping.is_valid(),
        ContactsStep.REVIEW: lambda p: len(p.state.candidates) > 0,
    },
    default_options=ContactImportOptions,
    job_fields=lambda o: {'type': o.contact_type, 'dateFormat': o.date_format},
    drop_blank_rows=True,
    on_immediate=_synthesize_results,
    fallback_fields=DEFAULT_CONTACT_FIELDS,
    empty_selection_imports_all=True,
    export_sheet='Contacts',
    export_filename='filtered_contacts.xlsx',
)


# ----------------------------------------------------------------------
# Transactions
# ----------------------------------------------------------------------

def _account_selected(pipeline: ImportPipeline) -> bool:
    account_id = pipeline.state.options.account_id
    if not account_id:
        return False
    eligible = pipeline.eligible_accounts
    return eligible is None or any(a.id == account_id for a in eligible)


TRANSACTIONS_CONFIG: PipelineConfig[TransactionCandidate, TransactionImportOptions] = PipelineConfig(
    entity=TRANSACTIONS,
    steps=TransactionsStep,
    mapping_step=TransactionsStep.FILE_SETUP,
    review_step=TransactionsStep.REVIEW,
    transform=transform_transactions,
    validators={
        TransactionsStep.UPLOAD: lambda p: p.state.upload is not None,
        TransactionsStep.ACCOUNT: _account_selected,
        TransactionsStep.FILE_SETUP: lambda p: p.state.options.date_format != '' and p.mapping.is_valid(),
        TransactionsStep.REVIEW: lambda p: len(p.state.selection) > 0,
    },
    default_options=TransactionImportOptions,
    job_fields=lambda o: {
        'accountId': o.account_id,
        'dateFormat': o.date_format,
        'columnMode': o.column_mode,
        'isReverse': o.reverse,
    },
    drop_blank_rows=False,
    on_immediate=None,
    fallback_fields=None,
    empty_selection_imports_all=False,
    export_sheet='Transactions',
    export_filename='filtered_transactions.xlsx',
    column_mode=lambda o: o.column_mode,
)


# ----------------------------------------------------------------------
# Chart of accounts
# ----------------------------------------------------------------------

ACCOUNTS_CONFIG: PipelineConfig[AccountCandidate, AccountImportOptions] = PipelineConfig(
    entity=ACCOUNTS,
    steps=AccountsStep,
    mapping_step=AccountsStep.MAPPING,
    review_step=AccountsStep.REVIEW,
    transform=transform_accounts,
    validators={
        AccountsStep.UPLOAD: lambda p: p.state.upload is not None,
        AccountsStep.MAPPING: lambda p: p.mapping.is_valid(),
        AccountsStep.REVIEW: lambda p: len(p.state.candidates) > 0,
    },
    default_options=AccountImportOptions,
    job_fields=lambda o: {},
    drop_blank_rows=True,
    on_immediate=_synthesize_results,
    fallback_fields=DEFAULT_ACCOUNT_FIELDS,
    empty_selection_imports_all=True,
    export_sheet='Accounts',
    export_filename='filtered_accounts.xlsx',
)


def contacts_pipeline(gateway, **kwargs) -> ImportPipeline[ContactCandidate, ContactImportOptions]:
    return ImportPipeline(CONTACTS_CONFIG, gateway, **kwargs)


def transactions_pipeline(gateway, **kwargs) -> ImportPipeline[TransactionCandidate, TransactionImportOptions]:
    return ImportPipeline(TRANSACTIONS_CONFIG, gateway, **kwargs)


def accounts_pipeline(gateway, **kwargs) -> ImportPipeline[AccountCandidate, AccountImportOptions]:
    return ImportPipeline(ACCOUNTS_CONFIG, gateway, **kwargs)
