"""
Configuration Models - Modèles de configuration avec validation Pydantic
========================================================================

Modèles pour gérer la configuration du sniper avec validation automatique,
valeurs par défaut et documentation intégrée.
"""

from typing import Dict, List, Optional, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from enum import Enum
import os


SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

DEFAULT_EXCLUDED_TOKENS = [
    SOL_MINT,
    USDC_MINT,
    "7dHbWXmci3dT8UFYWYZweBLXgycu7Y3iL6trKn1Y7ARj",  # stSOL
    "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So",  # mSOL
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",  # USDT
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263",  # BONK
    "DUSTawucrTsGU8hcqRdHDCbuYhCPADMLM2VcCb8VnFnQ",  # DUST
    "AFbX8oGjGpmVFywbVouvhQSRmiW2aR1mohfahi4Y2AdB",  # GST
    "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU",  # SAMO
    "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R",  # RAY
    "kinXdEcpDQeHPEuQnqmUgtYykqKGVFq6CeVX5iAHJq6",  # KIN
    "HZ1JovNiVvGrGNiiYvEozEVgZ58xaU3RKwX8eACQBCt3",  # PYTH
    "bSo13r4TkiE4KumL71LsHTPpL2euBYLFx6h9HP3piy1",  # bSOL
    "DFL1zNkaGPWm1BwrQXq4ewV6VC37WJ8DkD61YqD6U9ay",  # wBTC
    "9n4nbM75f5Ui33ZbPYXn59EwSgE8CGsHtAeTH5YFeJ9E",  # BTC
    "2FPyTwcZLUg1MDrwsyoP4D6s1tM7hAkHYRjkNb5w6Pxk",  # ETH
    "EPeUFDgHRxs9xxEPVaL6kfGQvCon7jmAWKVUHuux1Tpz",  # wETH
]


class ConfigurationError(Exception):
    """Configuration invalide ou incomplète au démarrage"""
    pass


class BotMode(str, Enum):
    """Modes de fonctionnement du bot"""
    LIVE = "live"
    PAPER_TRADING = "paper_trading"


class LogLevel(str, Enum):
    """Niveaux de logging"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# =============================================================================
# BOT CONFIGURATION
# =============================================================================

class BotConfig(BaseModel):
    """Configuration générale du bot"""

    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(default="PumpSniper", description="Nom du bot")
    version: str = Field(default="1.0.0", description="Version du bot")
    mode: BotMode = Field(default=BotMode.PAPER_TRADING, description="Mode de fonctionnement")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Niveau de logging")

    shutdown_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        le=120,
        description="Délai de grâce avant abandon des tâches à l'arrêt"
    )

    execution_client: Optional[str] = Field(
        default=None,
        description="Client d'exécution live au format 'module:Classe'"
    )

    low_balance_warning: float = Field(
        default=0.2,
        ge=0,
        description="Seuil d'alerte de balance SOL basse"
    )


# =============================================================================
# NETWORK CONFIGURATION
# =============================================================================

class NetworkConfig(BaseModel):
    """Configuration du réseau Solana"""

    rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        description="Endpoint RPC HTTP"
    )

    ws_url: Optional[str] = Field(
        default=None,
        description="Endpoint RPC websocket (dérivé du RPC HTTP si absent)"
    )

    wallet_public_key: Optional[str] = Field(default=None, description="Clé publique du wallet")
    base_mint: str = Field(default=SOL_MINT, description="Asset de base pour les entrées")

    rpc_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    def get_ws_url(self) -> str:
        """Retourne l'URL websocket, dérivée de l'URL RPC si non configurée"""
        if self.ws_url:
            return self.ws_url
        if self.rpc_url.startswith("https://"):
            return "wss://" + self.rpc_url[len("https://"):]
        if self.rpc_url.startswith("http://"):
            return "ws://" + self.rpc_url[len("http://"):]
        return self.rpc_url


# =============================================================================
# TRADING CONFIGURATION
# =============================================================================

class TradingConfig(BaseModel):
    """Configuration du trading"""

    snipe_amount: float = Field(
        default=0.1,
        gt=0,
        le=1000,
        description="Montant SOL investi par entrée"
    )

    slippage_bps: int = Field(
        default=1000,
        ge=1,
        le=10000,
        description="Slippage maximum en basis points"
    )

    max_active_positions: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Nombre maximum de positions surveillées simultanément"
    )

    pre_trade_validation: bool = Field(
        default=True,
        description="Vérifier token info, liquidité et quote avant l'entrée"
    )

    min_entry_liquidity: float = Field(
        default=5.0,
        ge=0,
        description="Liquidité minimum pour une entrée"
    )


# =============================================================================
# RISK MANAGEMENT
# =============================================================================

class RiskManagementConfig(BaseModel):
    """Configuration de la gestion des risques"""

    stop_loss_percentage: float = Field(
        default=50.0,
        gt=0,
        lt=100,
        description="Stop loss en % sous le prix d'entrée"
    )

    take_profit_percentage: float = Field(
        default=200.0,
        ge=0,
        le=100000,
        description="Take profit en % au-dessus du prix d'entrée"
    )

    take_profit_sell_percentage: float = Field(
        default=80.0,
        gt=0,
        le=100,
        description="Fraction vendue au premier take profit"
    )

    max_position_age_hours: float = Field(
        default=24.0,
        gt=0,
        le=8760,
        description="Âge maximum des positions en heures"
    )

    monitor_interval_seconds: float = Field(
        default=15.0,
        gt=0,
        le=3600,
        description="Intervalle de surveillance des positions"
    )

    error_retry_seconds: float = Field(
        default=30.0,
        gt=0,
        le=3600,
        description="Attente après une erreur de surveillance"
    )

    # Valeurs conservatrices pour les positions reconstruites depuis le wallet
    recovery_stop_loss_percentage: float = Field(default=50.0, gt=0, lt=100)
    recovery_take_profit_percentage: float = Field(default=200.0, ge=0)
    recovery_entry_age_hours: float = Field(default=1.0, ge=0)
    recovery_default_investment: float = Field(default=0.1, ge=0)


# =============================================================================
# DISCOVERY
# =============================================================================

class DiscoveryConfig(BaseModel):
    """Configuration du scanner de nouveaux tokens"""

    scan_interval_seconds: float = Field(default=5.0, gt=0, le=3600)
    error_retry_seconds: float = Field(default=2.0, gt=0, le=3600)

    feeds: List[str] = Field(
        default_factory=lambda: ["jupiter", "pumpfun"],
        description="Flux de nouveaux tokens interrogés à chaque cycle"
    )

    seed_known_tokens_on_first_scan: bool = Field(
        default=True,
        description="Premier scan: enregistrer la liste Jupiter sans déclencher de callback"
    )

    min_liquidity_threshold: float = Field(default=1.0, ge=0)
    min_token_age_hours: float = Field(default=0.0, ge=0)
    max_token_age_hours: float = Field(default=720.0, gt=0)

    max_wait_for_liquidity_ms: int = Field(default=300000, ge=0)
    liquidity_backoff_initial_seconds: float = Field(default=2.0, gt=0)
    liquidity_backoff_multiplier: float = Field(default=1.5, ge=1)
    liquidity_backoff_max_seconds: float = Field(default=15.0, gt=0)
    liquidity_max_attempts: int = Field(default=10, ge=1)
    test_quote_amount: float = Field(default=0.01, gt=0, description="Montant SOL de la quote test")

    excluded_tokens: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_TOKENS))

    token_program_ids: List[str] = Field(
        default_factory=lambda: [TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID]
    )

    @model_validator(mode="after")
    def validate_age_window(self):
        """Valide la cohérence de la fenêtre d'âge"""
        if self.min_token_age_hours >= self.max_token_age_hours:
            raise ValueError("min_token_age_hours doit être < max_token_age_hours")
        return self


# =============================================================================
# MARKET DATA PROVIDERS
# =============================================================================

class ProviderConfig(BaseModel):
    """Configuration d'un fournisseur de données"""

    enabled: bool = Field(default=True, description="Fournisseur activé")
    base_url: str = Field(..., description="URL de base de l'API")
    api_key: Optional[str] = Field(default=None, description="Clé API")
    timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    # Rate limiting
    min_interval_seconds: float = Field(
        default=1.0,
        ge=0,
        le=600,
        description="Espacement minimum entre deux requêtes"
    )
    max_requests_per_window: int = Field(default=120, ge=1)
    window_seconds: float = Field(default=300.0, gt=0)
    max_queue_size: int = Field(default=50, ge=1)

    # Retry
    max_rate_limit_retries: int = Field(default=15, ge=0, le=100)
    transient_retries: int = Field(default=2, ge=0, le=20)
    backoff_multiplier: float = Field(default=1.5, ge=1)
    max_backoff_seconds: float = Field(default=30.0, gt=0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v):
        """Valide le format de l'URL"""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL invalide: {v}")
        return v.rstrip("/")


class ProvidersConfig(BaseModel):
    """Configuration de tous les fournisseurs"""

    jupiter: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(
            base_url="https://price.jup.ag",
            min_interval_seconds=1.0,
            max_requests_per_window=120,
            timeout_seconds=30.0
        )
    )

    raydium: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(
            base_url="https://api.raydium.io",
            min_interval_seconds=10.0,
            max_requests_per_window=20,
            timeout_seconds=30.0
        )
    )

    birdeye: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(
            base_url="https://public-api.birdeye.so",
            min_interval_seconds=0.1,
            max_requests_per_window=1000
        )
    )

    solscan: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(
            base_url="https://public-api.solscan.io",
            min_interval_seconds=2.0,
            max_requests_per_window=20
        )
    )

    pumpfun: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(
            base_url="https://api.pump.fun",
            min_interval_seconds=1.0,
            max_requests_per_window=120
        )
    )

    onchain: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(
            base_url="https://api.mainnet-beta.solana.com",
            min_interval_seconds=0.2,
            max_requests_per_window=600
        )
    )


class MarketDataConfig(BaseModel):
    """Configuration de l'agrégateur de données de marché"""

    cache_ttl_seconds: Dict[str, float] = Field(
        default_factory=lambda: {
            "price": 300.0,
            "volume": 300.0,
            "liquidity": 300.0,
            "pools": 300.0,
            "metrics": 300.0,
            "token_info": 300.0,
            "holders": 300.0,
            "age": 3600.0,
            "quote": 15.0,
        },
        description="TTL du cache par type de donnée"
    )

    provider_order: Dict[str, List[str]] = Field(
        default_factory=lambda: {
            "price": ["jupiter", "raydium", "birdeye"],
            "liquidity": ["raydium", "birdeye"],
            "volume": ["jupiter", "raydium", "birdeye"],
            "metrics": ["birdeye", "raydium", "jupiter"],
            "token_info": ["jupiter", "raydium", "solscan", "birdeye"],
            "age": ["onchain"],
            "holders": ["solscan"],
            "quote": ["jupiter"],
        },
        description="Ordre de priorité des fournisseurs par type de donnée"
    )

    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)

    @field_validator("cache_ttl_seconds")
    @classmethod
    def validate_ttls(cls, v):
        """Valide les TTL"""
        for kind, ttl in v.items():
            if ttl < 0:
                raise ValueError(f"TTL négatif pour {kind}")
        return v


# =============================================================================
# VALIDATION & SCORING
# =============================================================================

class ValidationConfig(BaseModel):
    """Seuils du filtre de validité et poids des scores"""

    max_liquidity: float = Field(default=1_000_000.0, gt=0)
    max_price: float = Field(default=10_000.0, gt=0)
    max_volume_liquidity_ratio: float = Field(default=100.0, gt=0)
    max_age_days: float = Field(default=30.0, gt=0)

    blocklist: List[str] = Field(
        default_factory=lambda: ["test", "scam", "fake", "pump", "dump"],
        description="Sous-chaînes interdites dans nom/symbole"
    )

    score_weights: List[float] = Field(default_factory=lambda: [0.2, 0.2, 0.2, 0.2, 0.2])
    quick_score_weights: List[float] = Field(default_factory=lambda: [0.4, 0.3, 0.2, 0.1])

    @field_validator("blocklist")
    @classmethod
    def normalize_blocklist(cls, v):
        return [keyword.lower() for keyword in v if keyword]

    @field_validator("score_weights")
    @classmethod
    def validate_score_weights(cls, v):
        if len(v) != 5:
            raise ValueError("score_weights attend 5 poids")
        if abs(sum(v) - 1.0) > 1e-9:
            raise ValueError("La somme des poids doit valoir 1.0")
        return v

    @field_validator("quick_score_weights")
    @classmethod
    def validate_quick_weights(cls, v):
        if len(v) != 4:
            raise ValueError("quick_score_weights attend 4 poids")
        if abs(sum(v) - 1.0) > 1e-9:
            raise ValueError("La somme des poids doit valoir 1.0")
        return v


# =============================================================================
# CONNECTION & PERSISTENCE
# =============================================================================

class ConnectionConfig(BaseModel):
    """Configuration de la souscription websocket"""

    enabled: bool = Field(default=True)
    max_reconnect_attempts: int = Field(default=5, ge=1, le=100)
    initial_reconnect_delay_seconds: float = Field(default=1.0, gt=0)
    max_reconnect_delay_seconds: float = Field(default=30.0, gt=0)
    health_check_interval_seconds: float = Field(default=30.0, gt=0)
    heartbeat_seconds: float = Field(default=30.0, gt=0)
    commitment: str = Field(default="confirmed")


class PersistenceConfig(BaseModel):
    """Fichiers d'état"""

    positions_file: str = Field(default="data/positions.json")
    known_tokens_file: str = Field(default=".cache/pump_tokens.json")


# =============================================================================
# CONFIGURATION PRINCIPALE
# =============================================================================

class SniperConfig(BaseModel):
    """Configuration complète du sniper"""

    bot: BotConfig = Field(default_factory=BotConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    risk_management: RiskManagementConfig = Field(default_factory=RiskManagementConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)

    logging: Dict[str, Any] = Field(
        default_factory=lambda: {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "console": True,
            "files": {
                "main_log": "data/logs/bot.log",
                "error_log": "data/logs/error.log",
                "trading_log": "data/logs/trading.log"
            },
            "rotation": {"max_size_mb": 100, "backup_count": 10},
            "noise_patterns": [
                "WebSocket connection closed",
                "Cannot connect to host",
                "Server disconnected",
                "ECONNRESET",
                "429 Too Many Requests",
            ]
        }
    )

    def is_paper_trading(self) -> bool:
        return self.bot.mode == BotMode.PAPER_TRADING.value

    def get_excluded_tokens(self) -> set:
        """Retourne l'ensemble des tokens exclus (base asset inclus)"""
        excluded = set(self.discovery.excluded_tokens)
        excluded.add(self.network.base_mint)
        return excluded


# =============================================================================
# CONFIGURATION LOADER
# =============================================================================

def _env_number(value: str):
    return float(value) if '.' in value else int(value)


def load_config_from_env() -> Dict[str, Any]:
    """Charge la configuration depuis les variables d'environnement"""
    config: Dict[str, Any] = {}

    # Bot config
    if os.getenv('BOT_MODE'):
        config['bot'] = {'mode': os.getenv('BOT_MODE')}

    if os.getenv('LOG_LEVEL'):
        config.setdefault('bot', {})['log_level'] = os.getenv('LOG_LEVEL').upper()

    if os.getenv('EXECUTION_CLIENT'):
        config.setdefault('bot', {})['execution_client'] = os.getenv('EXECUTION_CLIENT')

    # Network
    network = {}
    rpc_url = os.getenv('SOLANA_RPC_URL')
    if not rpc_url and os.getenv('HELIUS_API_KEY'):
        rpc_url = f"https://mainnet.helius-rpc.com/?api-key={os.getenv('HELIUS_API_KEY')}"
    if rpc_url:
        network['rpc_url'] = rpc_url
    if os.getenv('SOLANA_WS_URL'):
        network['ws_url'] = os.getenv('SOLANA_WS_URL')
    if os.getenv('WALLET_PUBLIC_KEY'):
        network['wallet_public_key'] = os.getenv('WALLET_PUBLIC_KEY')
    if network:
        config['network'] = network

    # Trading
    trading_vars = {
        'PUMP_SNIPE_AMOUNT': 'snipe_amount',
        'SLIPPAGE_BPS': 'slippage_bps',
        'MAX_ACTIVE_POSITIONS': 'max_active_positions',
    }
    trading = {}
    for env_var, config_key in trading_vars.items():
        if os.getenv(env_var):
            trading[config_key] = _env_number(os.getenv(env_var))
    if trading:
        config['trading'] = trading

    # Risk management
    risk_vars = {
        'STOP_LOSS_PERCENTAGE': 'stop_loss_percentage',
        'TAKE_PROFIT_PERCENTAGE': 'take_profit_percentage',
        'POSITION_MONITOR_INTERVAL': 'monitor_interval_seconds',
        'MAX_POSITION_AGE_HOURS': 'max_position_age_hours',
    }
    risk_config = {}
    for env_var, config_key in risk_vars.items():
        if os.getenv(env_var):
            risk_config[config_key] = _env_number(os.getenv(env_var))
    if risk_config:
        config['risk_management'] = risk_config

    # Discovery
    discovery_vars = {
        'MIN_LIQUIDITY_THRESHOLD': 'min_liquidity_threshold',
        'MIN_TOKEN_AGE_HOURS': 'min_token_age_hours',
        'MAX_TOKEN_AGE_HOURS': 'max_token_age_hours',
        'SCAN_INTERVAL': 'scan_interval_seconds',
        'MAX_WAIT_FOR_LIQUIDITY': 'max_wait_for_liquidity_ms',
    }
    discovery = {}
    for env_var, config_key in discovery_vars.items():
        if os.getenv(env_var):
            discovery[config_key] = _env_number(os.getenv(env_var))
    if discovery:
        config['discovery'] = discovery

    # Providers
    providers = {}
    if os.getenv('BIRDEYE_API_KEY'):
        providers['birdeye'] = {'api_key': os.getenv('BIRDEYE_API_KEY')}
    if os.getenv('SOLSCAN_API_KEY'):
        providers['solscan'] = {'api_key': os.getenv('SOLSCAN_API_KEY')}
    if rpc_url:
        providers['onchain'] = {'base_url': rpc_url}
    if providers:
        config['market_data'] = {'providers': providers}

    return config
