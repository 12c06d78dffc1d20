from uuid import uuid4

from sqlalchemy import Column, Float, ForeignKey, Index, Integer, Table, Text, text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()
metadata = Base.metadata


def new_id() -> str:
    return uuid4().hex


class ProfessionalProfiles(Base):
    __tablename__ = 'professional_profiles'

    id = Column(Text, primary_key=True, default=new_id)
    clinic_id = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    appointment_duration = Column(Integer, nullable=False, server_default=text('50'))
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    availability_rules = relationship('AvailabilityRules', back_populates='professional_profile')
    appointments = relationship('Appointments', back_populates='professional_profile')


class Patients(Base):
    __tablename__ = 'patients'

    id = Column(Text, primary_key=True, default=new_id)
    clinic_id = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    phone = Column(Text)
    email = Column(Text)
    consent_whatsapp = Column(Integer, nullable=False, server_default=text('0'))
    consent_email = Column(Integer, nullable=False, server_default=text('0'))
    last_visit_at = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    appointments = relationship('Appointments', back_populates='patient')


class TherapyGroups(Base):
    __tablename__ = 'therapy_groups'

    id = Column(Text, primary_key=True, default=new_id)
    clinic_id = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    professional_profile_id = Column(ForeignKey('professional_profiles.id', ondelete='CASCADE'), nullable=False)


class AvailabilityRules(Base):
    __tablename__ = 'availability_rules'

    id = Column(Text, primary_key=True, default=new_id)
    professional_profile_id = Column(ForeignKey('professional_profiles.id', ondelete='CASCADE'), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(Text, nullable=False)  # HH:MM
    end_time = Column(Text, nullable=False)
    is_active = Column(Integer, nullable=False, server_default=text('1'))

    professional_profile = relationship('ProfessionalProfiles', back_populates='availability_rules')


class AvailabilityExceptions(Base):
    __tablename__ = 'availability_exceptions'

    id = Column(Text, primary_key=True, default=new_id)
    clinic_id = Column(Text, nullable=False)
    professional_profile_id = Column(ForeignKey('professional_profiles.id', ondelete='CASCADE'))  # NULL = clinic-wide
    date = Column(Text)  # YYYY-MM-DD, set when not recurring
    day_of_week = Column(Integer)  # set when recurring
    is_recurring = Column(Integer, nullable=False, server_default=text('0'))
    is_available = Column(Integer, nullable=False, server_default=text('0'))
    start_time = Column(Text)  # NULL + NULL = whole day
    end_time = Column(Text)
    reason = Column(Text)
    is_clinic_wide = Column(Integer, nullable=False, server_default=text('0'))
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))


t_recurrence_professionals = Table(
    'recurrence_professionals', metadata,
    Column('recurrence_id', ForeignKey('appointment_recurrences.id', ondelete='CASCADE'), primary_key=True),
    Column('professional_profile_id', ForeignKey('professional_profiles.id', ondelete='CASCADE'), primary_key=True),
)


t_appointment_professionals = Table(
    'appointment_professionals', metadata,
    Column('appointment_id', ForeignKey('appointments.id', ondelete='CASCADE'), primary_key=True),
    Column('professional_profile_id', ForeignKey('professional_profiles.id', ondelete='CASCADE'), primary_key=True),
)


class AppointmentRecurrences(Base):
    __tablename__ = 'appointment_recurrences'

    id = Column(Text, primary_key=True, default=new_id)
    clinic_id = Column(Text, nullable=False)
    professional_profile_id = Column(ForeignKey('professional_profiles.id', ondelete='CASCADE'), nullable=False)
    patient_id = Column(ForeignKey('patients.id', ondelete='SET NULL'))
    recurrence_type = Column(Text, nullable=False)  # WEEKLY / BIWEEKLY / MONTHLY
    recurrence_end_type = Column(Text, nullable=False)  # BY_DATE / BY_OCCURRENCES / INDEFINITE
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Text, nullable=False)
    end_time = Column(Text, nullable=False)
    duration = Column(Integer, nullable=False)
    start_date = Column(Text, nullable=False)
    end_date = Column(Text)
    occurrences = Column(Integer)
    last_generated_date = Column(Text)
    modality = Column(Text)
    is_active = Column(Integer, nullable=False, server_default=text('1'))
    exceptions = Column(Text, nullable=False, server_default=text("'[]'"))  # JSON list of YYYY-MM-DD
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    patient = relationship('Patients')
    appointments = relationship('Appointments', back_populates='recurrence')
    additional_professionals = relationship('ProfessionalProfiles', secondary=t_recurrence_professionals)


class Appointments(Base):
    __tablename__ = 'appointments'
    __table_args__ = (
        # Not unique: cancelled entries and group participants share start times
        Index('ix_appointments_professional_scheduled', 'professional_profile_id', 'scheduled_at'),
    )

    id = Column(Text, primary_key=True, default=new_id)
    clinic_id = Column(Text, nullable=False)
    professional_profile_id = Column(ForeignKey('professional_profiles.id', ondelete='CASCADE'), nullable=False)
    patient_id = Column(ForeignKey('patients.id', ondelete='SET NULL'))
    recurrence_id = Column(ForeignKey('appointment_recurrences.id', ondelete='SET NULL'))
    group_id = Column(ForeignKey('therapy_groups.id', ondelete='SET NULL'))
    scheduled_at = Column(Text, nullable=False)  # ISO, clinic-local
    end_at = Column(Text, nullable=False)
    status = Column(Text, nullable=False, server_default=text("'AGENDADO'"))
    type = Column(Text, nullable=False, server_default=text("'CONSULTA'"))
    blocks_time = Column(Integer, nullable=False, server_default=text('1'))
    modality = Column(Text)
    title = Column(Text)
    notes = Column(Text)
    price = Column(Float)
    cancellation_reason = Column(Text)
    cancelled_at = Column(Text)
    confirmed_at = Column(Text)
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))

    professional_profile = relationship('ProfessionalProfiles', back_populates='appointments')
    patient = relationship('Patients', back_populates='appointments')
    recurrence = relationship('AppointmentRecurrences', back_populates='appointments')
    additional_professionals = relationship('ProfessionalProfiles', secondary=t_appointment_professionals)


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id = Column(Integer, primary_key=True)
    event_type = Column(Text, nullable=False)
    entity_type = Column(Text, nullable=False)
    entity_id = Column(Text, nullable=False)
    payload = Column(Text)
    created_at = Column(
        Text,
        nullable=False,
        server_default=text('CURRENT_TIMESTAMP')
    )
