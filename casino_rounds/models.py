from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import Index, JSON, UniqueConstraint

db = SQLAlchemy()

Money = db.Numeric(12, 2, asdecimal=True)
Multiplier = db.Numeric(10, 2, asdecimal=True)


def _utcnow():
    return datetime.now(timezone.utc)


class Profile(db.Model):
    __tablename__ = 'profiles'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False, index=True)
    avatar_url = db.Column(db.String(255), nullable=True)
    balance = db.Column(Money, default=Decimal("0.00"), nullable=False)
    wagered = db.Column(Money, default=Decimal("0.00"), nullable=False)
    # Per-user seed pair for instant games
    server_seed = db.Column(db.String(64), nullable=True)
    client_seed = db.Column(db.String(64), nullable=True)
    nonce = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<Profile {self.username}>"

class RouletteRound(db.Model):
    __tablename__ = 'roulette_rounds'
    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(20), nullable=False, default='betting', index=True)
    server_seed = db.Column(db.String(64), nullable=False)
    server_seed_hash = db.Column(db.String(64), nullable=False)
    client_seed = db.Column(db.String(64), nullable=False)
    nonce = db.Column(db.Integer, nullable=False)
    winning_number = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    spun_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)

    bets = db.relationship('RouletteBet', backref='round', lazy='dynamic')

    def __repr__(self):
        return f"<RouletteRound {self.id} (Status: {self.status}, Number: {self.winning_number})>"

class RouletteBet(db.Model):
    __tablename__ = 'roulette_bets'
    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey('roulette_rounds.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False, index=True)
    bet_amount = db.Column(Money, nullable=False)
    bet_type = db.Column(db.String(20), nullable=False)
    payout = db.Column(Money, nullable=True)
    profit = db.Column(Money, nullable=True)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index('ix_roulette_bets_round_user', 'round_id', 'user_id'),
    )

    def __repr__(self):
        return f"<RouletteBet {self.id} (User: {self.user_id}, Round: {self.round_id}, {self.bet_type}: {self.bet_amount})>"

class CrashRound(db.Model):
    __tablename__ = 'crash_rounds'
    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(20), nullable=False, default='waiting', index=True)
    server_seed = db.Column(db.String(64), nullable=False)
    public_seed = db.Column(db.String(64), nullable=False)
    client_seed = db.Column(db.String(64), nullable=False)
    nonce = db.Column(db.Integer, nullable=False)
    crash_point = db.Column(Multiplier, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)

    bets = db.relationship('CrashBet', backref='round', lazy='dynamic')

    def __repr__(self):
        return f"<CrashRound {self.id} (Status: {self.status}, Crash: {self.crash_point})>"

class CrashBet(db.Model):
    __tablename__ = 'crash_bets'
    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey('crash_rounds.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False, index=True)
    bet_amount = db.Column(Money, nullable=False)
    auto_cashout_at = db.Column(Multiplier, nullable=True)
    cashout_multiplier = db.Column(Multiplier, nullable=True)
    payout = db.Column(Money, nullable=True)
    profit = db.Column(Money, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='placed', index=True) # placed, cashed_out, busted
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<CrashBet {self.id} (User: {self.user_id}, Round: {self.round_id}, Bet: {self.bet_amount}, Status: {self.status})>"

class BalanceAdjustment(db.Model):
    """One row per balance movement; the idempotency key makes a repeated credit a no-op."""
    __tablename__ = 'balance_adjustments'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False, index=True)
    amount = db.Column(Money, nullable=False)
    idempotency_key = db.Column(db.String(128), nullable=False)
    reason = db.Column(db.String(50), nullable=False)
    balance_after = db.Column(Money, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('idempotency_key', name='uq_balance_adjustments_idempotency_key'),
    )

    def __repr__(self):
        return f"<BalanceAdjustment {self.idempotency_key} {self.amount}>"

class GameBet(db.Model):
    """Log of finished single-player games."""
    __tablename__ = 'game_bets'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False, index=True)
    game_name = db.Column(db.String(20), nullable=False, index=True)
    bet_amount = db.Column(Money, nullable=False)
    payout = db.Column(Money, nullable=False)
    multiplier = db.Column(db.Numeric(12, 4), nullable=False)
    server_seed_hash = db.Column(db.String(64), nullable=True)
    client_seed = db.Column(db.String(64), nullable=True)
    nonce = db.Column(db.Integer, nullable=True)
    details = db.Column(JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<GameBet {self.id} ({self.game_name}, Bet: {self.bet_amount}, Payout: {self.payout})>"

class BlackjackGame(db.Model):
    __tablename__ = 'blackjack_games'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('profiles.id'), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default='player_turn', index=True)
    state = db.Column(JSON, nullable=False)
    bet_amount = db.Column(Money, nullable=False)
    total_bet = db.Column(Money, nullable=False)
    payout = db.Column(Money, nullable=True)
    result = db.Column(db.String(20), nullable=True)
    server_seed_hash = db.Column(db.String(64), nullable=True)
    client_seed = db.Column(db.String(64), nullable=True)
    nonce = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self):
        return f"<BlackjackGame {self.id} (User: {self.user_id}, Status: {self.status})>"
