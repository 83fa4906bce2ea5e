import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask


def configure_logging(app):
    """Configure application logging"""

    # Create logs directory if it doesn't exist
    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'serverbackup.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    app.logger.addHandler(console_handler)
    app.logger.addHandler(file_handler)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, host=None, contexts=None):
    """
    Flask application factory

    Args:
        config_name: Key into serverbackup.config.config
        host: Object implementing the session, region and broadcast
            interfaces of serverbackup.host (StandaloneHost if omitted)
        contexts: Scheduler contexts for the engine; the APScheduler
            backed TaskContexts if omitted
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from serverbackup.config import config, Settings, BackupConfiguration
    app.config.from_object(config[config_name])

    # Configure logging
    configure_logging(app)

    # Configuration errors are fatal here, never per run
    settings = Settings(app.config)
    backup_configuration = BackupConfiguration.from_settings(settings)
    os.makedirs(backup_configuration.backup_root, exist_ok=True)

    from serverbackup.host import StandaloneHost
    from serverbackup.messages import MessageCatalog
    from serverbackup.backup import BackupOrchestrator, BackupStore
    from serverbackup.backup.logs import EngineLogger
    from serverbackup import scheduler as scheduler_module

    if host is None:
        host = StandaloneHost(app.logger)

    use_scheduler = contexts is None and app.config.get('SCHEDULER_ENABLED', True)
    if contexts is None:
        contexts = scheduler_module.TaskContexts(scheduler_module.init_scheduler(app))

    orchestrator = BackupOrchestrator(
        backup_configuration,
        scheduler=contexts,
        sessions=host,
        regions=host,
        broadcast=host,
        messages=MessageCatalog.from_file(app.config.get('MESSAGES_FILE')),
        logger=EngineLogger(app.logger),
        enabled=settings.get_bool('BACKUP_ENABLED', True)
    )

    app.extensions['backup_configuration'] = backup_configuration
    app.extensions['backup_orchestrator'] = orchestrator
    app.extensions['backup_store'] = BackupStore(backup_configuration.backup_root, backup_configuration.temp_path)

    # Register blueprints
    from serverbackup.routes import backup_routes
    app.register_blueprint(backup_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Determine if this process should run the scheduler
    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)
    should_init_scheduler = use_scheduler and (is_reloader_child or not is_development)

    if should_init_scheduler:
        import atexit

        app.logger.info("Initializing scheduler in this process...")
        scheduler_module.schedule_backups(orchestrator, settings.get_int('BACKUP_INTERVAL_MINUTES', 60))
        scheduler_module.start_scheduler()

        # Last backup and scheduler stop on shutdown
        atexit.register(
            scheduler_module.shutdown_backups,
            orchestrator,
            settings.get_bool('LAST_BACKUP_ON_SHUTDOWN', True),
            settings.get_int('LAST_BACKUP_TIMEOUT', 600)
        )
        app.logger.info("Scheduler initialized and started successfully")
    else:
        app.logger.info("Scheduler initialization skipped in this process")

    return app
