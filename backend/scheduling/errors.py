"""Typed failures raised and returned by the scheduling engine."""

from fastapi import status


class SchedulingError(Exception):
    """Base class for expected, caller-recoverable scheduling failures."""

    code = 'scheduling_error'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'The request could not be processed.'

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidConfiguration(SchedulingError):
    code = 'invalid_configuration'
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = 'Slot duration must be a positive number of minutes.'


class InvalidTimeSlot(SchedulingError):
    code = 'invalid_time_slot'
    default_message = 'Time slot must look like HH:MM-HH:MM with the start before the end.'


class PastDateError(SchedulingError):
    code = 'past_date'
    default_message = 'You cannot book a past date. Please select today or a future date.'


class BookingHorizonExceeded(SchedulingError):
    code = 'booking_horizon_exceeded'

    def __init__(self, horizon_days: int):
        self.horizon_days = horizon_days
        super().__init__(
            f'You cannot book a date more than {horizon_days} days from today. '
            f'Please select a date within the next {horizon_days} days.'
        )


class InsufficientBuffer(SchedulingError):
    code = 'insufficient_buffer'

    def __init__(self, current_time: str, time_slot: str, buffer_minutes: int):
        self.current_time = current_time
        self.time_slot = time_slot
        self.buffer_minutes = buffer_minutes
        super().__init__(
            f'Same-day bookings need at least {buffer_minutes} minutes before the slot starts. '
            f'Current time: {current_time}. Selected slot: {time_slot}.'
        )


class SlotNotOffered(SchedulingError):
    code = 'slot_not_offered'
    default_message = 'The doctor does not offer this time slot on the selected date.'


class SlotRaceLost(SchedulingError):
    code = 'slot_race_lost'
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, own_booking: bool):
        self.own_booking = own_booking
        if own_booking:
            message = 'You already have a booking for this time slot.'
        else:
            message = 'Someone else just booked this time slot. Please choose another one.'
        super().__init__(message)


class WindowClosed(SchedulingError):
    code = 'window_closed'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'The appointment time has already passed.'


class WindowNotOpen(SchedulingError):
    code = 'window_not_open'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'This can only be done during the scheduled appointment time.'


class NotYetCompleted(SchedulingError):
    code = 'not_yet_completed'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'The appointment must be completed first.'


class InvalidTransition(SchedulingError):
    code = 'invalid_transition'
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current_status: str, action: str):
        self.current_status = current_status
        self.action = action
        super().__init__(f"Action '{action}' is not allowed while the appointment is {current_status}.")


class NotPermitted(SchedulingError):
    code = 'not_permitted'
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'You are not allowed to change this appointment.'


class AppointmentNotFound(SchedulingError):
    code = 'appointment_not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Appointment not found.'


class DoctorNotFound(SchedulingError):
    code = 'doctor_not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Doctor not found.'
