import json
import logging
import os
import uuid
from contextlib import ExitStack

from flask import Flask, Response, jsonify, request, send_file, stream_with_context
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename

from chbridge.clickhouse import clickhouse_client, describe_table, ensure_sample_table, list_tables, ping
from chbridge.config import ConnectionSettings, IngestSettings
from chbridge.errors import BridgeError, InvalidParameter, MissingParameters
from chbridge.export import export_csv
from chbridge.joins import execute_join, join_columns, joinable_tables
from chbridge.log import configure_logging
from chbridge.models import ColumnDescriptor
from chbridge.pipeline import IngestionPipeline
from chbridge.preview import PreviewService
from chbridge.sources import DatabaseSource, FileSource, check_extension
from chbridge.transport import pick_stream

app = Flask(__name__)
UPLOAD_FOLDER = 'uploads'
DATABASE_SOURCE = 'clickhouse'

app.config.from_mapping(
    UPLOAD_FOLDER=UPLOAD_FOLDER,
    BATCH_SIZE=1000,
    DEFAULT_PAGE_SIZE=100,
    MAX_PAGE_SIZE=1000,
    CSV_DELIMITER=',',
    CLICKHOUSE_HOST='localhost',
    CLICKHOUSE_PORT=8123,
    CLICKHOUSE_DATABASE='default',
    CLICKHOUSE_USER='default',
    CLICKHOUSE_PASSWORD='',
    CLICKHOUSE_SECURE=False,
    SEED_SAMPLE_TABLE=True,
    LOG_LEVEL='INFO',
)
app.config.from_prefixed_env()

configure_logging(app.config['LOG_LEVEL'])
logger = logging.getLogger('chbridge.app')


def _payload():
    return request.get_json(silent=True) or request.form.to_dict()


def _is_database(payload):
    return str(payload.get('source', '')).strip().lower() == DATABASE_SOURCE


def _connection(payload):
    return ConnectionSettings.from_payload(payload, ConnectionSettings.from_mapping(app.config))


def _settings(payload):
    return IngestSettings.from_mapping(app.config).with_delimiter(payload.get('delimiter'))


def _require(payload, *names):
    missing = [name for name in names if not payload.get(name)]
    if missing:
        raise MissingParameters(f"Missing required parameters: {', '.join(missing)}")


def _int_field(payload, name):
    value = payload.get(name)
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidParameter(f'{name} must be an integer, got {value!r}')


def _json_field(payload, name):
    value = payload.get(name)
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise InvalidParameter(f'{name} must be valid JSON')
    return value


def _columns_field(payload):
    columns = _json_field(payload, 'columns')
    if columns is None:
        return None
    if not isinstance(columns, list):
        raise InvalidParameter('columns must be a JSON list')
    return [ColumnDescriptor.from_dict(col) for col in columns]


def _upload_folder():
    folder = app.config['UPLOAD_FOLDER']
    os.makedirs(folder, exist_ok=True)
    return folder


def _save_upload(file):
    check_extension(file.filename)
    # secure_filename drops non-ASCII names entirely; the extension must survive for reuse
    stem, ext = os.path.splitext(file.filename)
    stored_name = (secure_filename(stem) or 'upload') + ext.lower()
    filename = os.path.join(_upload_folder(), str(uuid.uuid4()) + '_' + stored_name)
    file.save(filename)
    logger.info('Saved upload %s to %s', file.filename, filename)
    return filename, file.filename


def _stored_upload(file_path):
    """Resolve a ``filePath`` returned by an earlier call; only paths inside the upload folder."""
    folder = os.path.realpath(_upload_folder())
    path = os.path.realpath(file_path)
    if os.path.commonpath([folder, path]) != folder or not os.path.isfile(path):
        raise InvalidParameter('Unknown filePath')
    original_name = os.path.basename(path).split('_', 1)[-1]
    return path, original_name


def _file_source(payload, settings):
    if 'file' in request.files and request.files['file'].filename:
        path, original_name = _save_upload(request.files['file'])
    elif payload.get('filePath'):
        path, original_name = _stored_upload(payload['filePath'])
    else:
        raise MissingParameters('No file uploaded')
    return FileSource(path, original_name, delimiter=settings.delimiter,
                      chunk_size=settings.scan_chunk_size)


def _source(payload, settings, stack):
    if _is_database(payload):
        _require(payload, 'table')
        client = stack.enter_context(clickhouse_client(_connection(payload)))
        return DatabaseSource(client, payload['table'])
    return _file_source(payload, settings)


@app.errorhandler(BridgeError)
def handle_bridge_error(exc):
    logger.warning('%s: %s', type(exc).__name__, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


@app.errorhandler(Exception)
def handle_unexpected_error(exc):
    if isinstance(exc, HTTPException):
        return exc
    logger.exception('Unhandled error on %s %s', request.method, request.path)
    return jsonify({'success': False, 'error': 'Internal server error'}), 500


@app.route('/')
def index():
    return jsonify({'message': 'ClickHouse-FlatFile Ingestion Tool Backend'})


@app.route('/connect', methods=['POST'])
def connect():
    payload = _payload()
    _require(payload, 'source')
    if not _is_database(payload):
        return jsonify({'success': True, 'message': 'Flat File connection ready'})

    settings = _connection(payload)
    with clickhouse_client(settings) as client:
        ping(client, settings)
        tables = list_tables(client)
        if not tables and app.config['SEED_SAMPLE_TABLE']:
            ensure_sample_table(client)
            tables = list_tables(client)

    logger.info('Connected to %s, found %d tables', settings.describe(), len(tables))
    return jsonify({'success': True, 'tables': tables})


@app.route('/columns', methods=['POST'])
def columns():
    payload = _payload()
    _require(payload, 'source')

    if _is_database(payload):
        _require(payload, 'table')
        with clickhouse_client(_connection(payload)) as client:
            found = describe_table(client, payload['table'])
        return jsonify({'success': True, 'columns': [col.to_dict() for col in found]})

    if 'file' not in request.files and not payload.get('filePath'):
        raise MissingParameters('No file uploaded')
    source = _file_source(payload, _settings(payload))
    found = source.discover_schema()
    return jsonify({
        'success': True,
        'columns': [col.to_dict() for col in found],
        'filePath': source.path,
    })


@app.route('/preview', methods=['POST'])
def preview():
    payload = _payload()
    _require(payload, 'source')
    settings = _settings(payload)
    selected = _columns_field(payload) or []

    with ExitStack() as stack:
        source = _source(payload, settings, stack)
        result = PreviewService(settings).preview(
            source,
            [col.name for col in selected],
            page=_int_field(payload, 'page'),
            page_size=_int_field(payload, 'pageSize'),
        )

    result['success'] = True
    return jsonify(result)


@app.route('/ingest', methods=['POST'])
def ingest():
    payload = _payload()
    logger.info('Ingest requested into %s', payload.get('targetTable'))
    _require(payload, 'columns', 'targetTable')
    selected = _columns_field(payload)
    if not selected:
        raise MissingParameters('Missing required parameters: columns or targetTable')
    if not _is_database(payload) and 'file' in request.files:
        check_extension(request.files['file'].filename)

    settings = _settings(payload)
    with ExitStack() as stack:
        client = stack.enter_context(clickhouse_client(_connection(payload)))
        if _is_database(payload):
            _require(payload, 'table')
            source = DatabaseSource(client, payload['table'])
        else:
            source = _file_source(payload, settings)

        pipeline = IngestionPipeline(client, source, selected, payload['targetTable'], settings)
        pipeline.prepare()
        cleanup = stack.pop_all()

    stream, mimetype = pick_stream(request.headers.get('Accept'))

    response = Response(stream_with_context(stream(pipeline.drain())), mimetype=mimetype)
    response.call_on_close(cleanup.close)
    return response


@app.route('/download', methods=['POST'])
def download():
    payload = _payload()
    _require(payload, 'tableName')
    table = payload['tableName']

    with clickhouse_client(_connection(payload)) as client:
        data = export_csv(client, table)

    return send_file(data, mimetype='text/csv', as_attachment=True, download_name=f'{table}.csv')


@app.route('/joinable-tables', methods=['POST'])
def joinable_tables_route():
    payload = _payload()
    with clickhouse_client(_connection(payload)) as client:
        tables = joinable_tables(client)
    return jsonify({'success': True, 'tables': tables})


@app.route('/join-columns', methods=['POST'])
def join_columns_route():
    payload = _payload()
    tables = _json_field(payload, 'tables')
    with clickhouse_client(_connection(payload)) as client:
        table_columns = join_columns(client, tables)
    return jsonify({'success': True, 'tableColumns': table_columns})


@app.route('/execute-join', methods=['POST'])
def execute_join_route():
    payload = _payload()
    with clickhouse_client(_connection(payload)) as client:
        data = execute_join(
            client,
            _json_field(payload, 'tables'),
            _json_field(payload, 'joinConditions'),
            _json_field(payload, 'selectedColumns'),
        )
    return jsonify({'success': True, 'data': data, 'count': len(data)})


if __name__ == '__main__':
    app.run(debug=True)
