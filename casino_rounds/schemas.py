from decimal import Decimal

from marshmallow import Schema, fields, ValidationError, post_dump, validates
from marshmallow_sqlalchemy import SQLAlchemyAutoSchema, auto_field
from marshmallow.validate import OneOf, Range, Length

from casino_rounds.models import (
    db, Profile, RouletteRound, RouletteBet, CrashRound, CrashBet,
    BalanceAdjustment, GameBet, BlackjackGame
)
from casino_rounds.utils.fairness import hash_server_seed
from casino_rounds.utils.roulette_helper import parse_bet_type, InvalidBetTypeError
from casino_rounds.utils.plinko_helper import RISK_LEVELS, MIN_ROWS, MAX_ROWS
from casino_rounds.utils import keno_helper

MIN_BET = Decimal("0.01")
MAX_BET = Decimal("100000.00")

def _money_field(**kwargs):
    return fields.Decimal(places=2, as_string=True, **kwargs)


# --- Profile Schemas ---
class PublicProfileSchema(SQLAlchemyAutoSchema):
    """What other players may see next to a bet."""
    class Meta:
        model = Profile
        sqla_session = db.session
        exclude = ("balance", "wagered", "server_seed", "client_seed", "nonce", "created_at")

class ProfileSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = Profile
        sqla_session = db.session
        exclude = ("server_seed",) # Never expose the active server seed

    id = auto_field(dump_only=True)
    balance = _money_field(dump_only=True)
    wagered = _money_field(dump_only=True)
    server_seed_hash = fields.Method("get_server_seed_hash", dump_only=True)

    def get_server_seed_hash(self, obj):
        return hash_server_seed(obj.server_seed) if obj.server_seed else None


# --- Roulette Schemas ---
class RouletteRoundSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = RouletteRound
        sqla_session = db.session

    id = auto_field(dump_only=True)

    @post_dump
    def hide_unrevealed(self, data, **kwargs):
        # The seed is revealed once the round has ended
        if data.get('status') != 'ended':
            data['server_seed'] = None
        return data

class RouletteBetSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = RouletteBet
        sqla_session = db.session
        include_fk = True

    id = auto_field(dump_only=True)
    bet_amount = _money_field()
    payout = _money_field(allow_none=True)
    profit = _money_field(allow_none=True)


# --- Crash Schemas ---
class CrashRoundSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = CrashRound
        sqla_session = db.session

    id = auto_field(dump_only=True)
    crash_point = fields.Decimal(places=2, as_string=True, allow_none=True)

    @post_dump
    def hide_unrevealed(self, data, **kwargs):
        # crash_point is fixed when the round starts but only shown once it crashed
        if data.get('status') != 'crashed':
            data['crash_point'] = None
            data['server_seed'] = None
        return data

class CrashBetSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = CrashBet
        sqla_session = db.session
        include_fk = True

    id = auto_field(dump_only=True)
    bet_amount = _money_field()
    auto_cashout_at = fields.Decimal(places=2, as_string=True, allow_none=True)
    cashout_multiplier = fields.Decimal(places=2, as_string=True, allow_none=True)
    payout = _money_field(allow_none=True)
    profit = _money_field(allow_none=True)


# --- Ledger / instant game Schemas ---
class BalanceAdjustmentSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = BalanceAdjustment
        sqla_session = db.session
        include_fk = True

    amount = _money_field()
    balance_after = _money_field(allow_none=True)

class GameBetSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = GameBet
        sqla_session = db.session
        include_fk = True

    bet_amount = _money_field()
    payout = _money_field()
    multiplier = fields.Decimal(places=4, as_string=True)

class BlackjackGameSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = BlackjackGame
        sqla_session = db.session
        include_fk = True
        exclude = ("state",) # Contains the remaining shoe

    bet_amount = _money_field()
    total_bet = _money_field()
    payout = _money_field(allow_none=True)


# --- Request Schemas ---
class RoundBetBaseSchema(Schema):
    round_id = fields.Int(required=True, validate=Range(min=1))
    bet_amount = fields.Decimal(
        required=True,
        places=2,
        validate=Range(min=MIN_BET, max=MAX_BET, error=f"Bet amount must be between {MIN_BET} and {MAX_BET}")
    )

class RouletteBetRequestSchema(RoundBetBaseSchema):
    bet_type = fields.Str(required=True, validate=Length(min=1, max=20))

    @validates('bet_type')
    def validate_bet_type(self, value, **kwargs):
        try:
            parse_bet_type(value)
        except InvalidBetTypeError as e:
            raise ValidationError(str(e))

class RoundActionSchema(Schema):
    round_id = fields.Int(required=True, validate=Range(min=1))

class CrashBetRequestSchema(RoundBetBaseSchema):
    auto_cashout_at = fields.Decimal(
        places=2, required=False, allow_none=True,
        validate=Range(min=Decimal("1.01"), max=Decimal("9999.00"))
    )

class CrashCashoutSchema(Schema):
    bet_id = fields.Int(required=True, validate=Range(min=1))

class SettleBetSchema(Schema):
    expected_payout = fields.Decimal(places=2, required=False, allow_none=True)

class FairnessVerifySchema(Schema):
    game = fields.Str(required=True, validate=OneOf(['roulette', 'crash', 'plinko', 'keno']))
    server_seed = fields.Str(required=True, validate=Length(min=1, max=128))
    client_seed = fields.Str(required=True, validate=Length(max=128))
    nonce = fields.Int(required=True, strict=True, validate=Range(min=0))
    outcome = fields.Raw(required=False, allow_none=True)
    rows = fields.Int(required=False, validate=Range(min=MIN_ROWS, max=MAX_ROWS))

class ClientSeedSchema(Schema):
    client_seed = fields.Str(required=True, validate=Length(min=1, max=64))

class InstantBetSchema(Schema):
    bet_amount = fields.Decimal(
        required=True,
        places=2,
        validate=Range(min=MIN_BET, max=MAX_BET, error=f"Bet amount must be between {MIN_BET} and {MAX_BET}")
    )

class PlinkoPlaySchema(InstantBetSchema):
    risk = fields.Str(required=True, validate=OneOf(list(RISK_LEVELS)))
    rows = fields.Int(required=True, strict=True, validate=Range(min=MIN_ROWS, max=MAX_ROWS))

class KenoPlaySchema(InstantBetSchema):
    risk = fields.Str(load_default='classic', validate=OneOf(list(keno_helper.PAYOUT_TABLES)))
    picks = fields.List(
        fields.Int(strict=True, validate=Range(min=1, max=keno_helper.BOARD_SIZE)),
        required=True,
        validate=Length(min=1, max=keno_helper.MAX_PICKS)
    )

    @validates('picks')
    def validate_unique(self, value, **kwargs):
        if len(set(value)) != len(value):
            raise ValidationError('Picks must be unique.')

class BlackjackStartSchema(InstantBetSchema):
    pass

class BlackjackActionSchema(Schema):
    action = fields.Str(required=True, validate=OneOf(['hit', 'stand', 'double']))


# Row serializers for the change feed and the backend, keyed by table name
ROW_SCHEMAS = {
    'profiles': PublicProfileSchema(),
    'roulette_rounds': RouletteRoundSchema(),
    'roulette_bets': RouletteBetSchema(),
    'crash_rounds': CrashRoundSchema(),
    'crash_bets': CrashBetSchema(),
    'balance_adjustments': BalanceAdjustmentSchema(),
    'game_bets': GameBetSchema(),
}

def serialize_row(obj):
    """Dumps a model instance with the schema registered for its table, or None when none is."""
    schema = ROW_SCHEMAS.get(getattr(obj, '__tablename__', None))
    return schema.dump(obj) if schema is not None else None
